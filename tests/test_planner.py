import pytest

from subsync_app.sync.contracts import DeactivationCandidate, ValidatedRecord
from subsync_app.sync.pipeline.planner import plan_batches, plan_deactivation_batches, validate_batch_size


def _records(count):
    return [
        ValidatedRecord(sequence_number=i, values={"user_id": f"U{i}", "email": f"user{i}@example.com"})
        for i in range(1, count + 1)
    ]


def test_plan_batches_chunks_in_order():
    batches = plan_batches(_records(250), "create", 100)

    assert [len(batch.accounts) for batch in batches] == [100, 100, 50]
    assert [batch.label for batch in batches] == ["create 1/3", "create 2/3", "create 3/3"]
    assert batches[0].accounts[0].business_id == "U1"
    assert batches[2].accounts[-1].business_id == "U250"


def test_plan_batches_pairs_each_record_within_its_batch():
    batches = plan_batches(_records(3), "update", 2)

    assert [(pair.business_id, pair.email) for pair in batches[0].associations] == [
        ("U1", "user1@example.com"),
        ("U2", "user2@example.com"),
    ]
    assert [pair.business_id for pair in batches[1].associations] == ["U3"]
    assert all(batch.operation == "update" for batch in batches)


def test_plan_batches_empty_input():
    assert plan_batches([], "create") == []


@pytest.mark.parametrize("size", [0, 101, -5])
def test_validate_batch_size_rejects_out_of_range(size):
    with pytest.raises(ValueError):
        validate_batch_size(size)


def test_plan_deactivation_batches():
    candidates = [DeactivationCandidate(f"U{i}", 0, 0, 0) for i in range(5)]

    batches = plan_deactivation_batches(candidates, 2)

    assert [len(batch.candidates) for batch in batches] == [2, 2, 1]
    assert [batch.index for batch in batches] == [1, 2, 3]
    assert all(batch.total == 3 for batch in batches)


def test_plan_batches_sends_one_contact_per_email():
    records = [
        ValidatedRecord(sequence_number=1, values={"user_id": "U1", "email": "shared@example.com", "user_type": "MP"}),
        ValidatedRecord(sequence_number=2, values={"user_id": "U2", "email": "shared@example.com", "user_type": "WIX"}),
    ]

    (batch,) = plan_batches(records, "create", 100)

    assert [account.business_id for account in batch.accounts] == ["U1", "U2"]
    assert [(contact.email, contact.user_type) for contact in batch.contacts] == [("shared@example.com", "USAMPS")]
    assert [pair.business_id for pair in batch.associations] == ["U1", "U2"]
