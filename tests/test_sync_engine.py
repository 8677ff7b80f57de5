import io

import pytest

from subsync_app.sync.adapters.csv_subscriptions import CSVHeaderError
from subsync_app.sync.pipeline import ReadPhaseError

HEADER = "user_id,email,user_type,active_sub,weekly_sub_count,monthly_sub_count,daily_sub_count\n"


def test_new_subscriber_is_created_and_linked(make_engine, fake_hubspot):
    summary = make_engine().run(HEADER + "U1,a@b.com,MP,true,1,0,0\n")

    assert summary.rows_read == 1
    assert (summary.accounts_created, summary.contacts_created) == (1, 1)
    assert summary.associations_created == 1
    account = fake_hubspot.account_by_business_id("U1")
    assert account["account_type"] == "MP"
    assert account["active_subscription"] == "true"
    assert account["ever_had_subscription"] == "true"
    assert list(fake_hubspot.contacts.values()) == [{"email": "a@b.com", "user_type": "MP"}]
    assert len(fake_hubspot.associations) == 1


def test_wix_user_type_maps_to_usamps(make_engine, fake_hubspot):
    make_engine().run(HEADER + "U1,a@b.com,WIX,true,0,0,0\n")

    assert fake_hubspot.account_by_business_id("U1")["account_type"] == "USAMPS"
    assert list(fake_hubspot.contacts.values())[0]["user_type"] == "USAMPS"


def test_invalid_email_row_is_skipped(make_engine, fake_hubspot):
    summary = make_engine().run(HEADER + "U1,not-an-email,MP,true,0,0,0\n")

    assert summary.rows_read == 1
    assert summary.rows_skipped == 1
    assert summary.records_written == 0
    assert fake_hubspot.calls_to("batch_create_accounts") == []


def test_existing_account_and_contact_are_updated(make_engine, fake_hubspot):
    account_id = fake_hubspot.seed_account("U1")
    fake_hubspot.seed_contact("a@b.com")

    summary = make_engine().run(HEADER + "U1,a@b.com,MP,true,2,0,0\n")

    assert (summary.accounts_created, summary.accounts_updated) == (0, 1)
    assert (summary.contacts_created, summary.contacts_updated) == (0, 1)
    assert fake_hubspot.accounts[account_id]["weekly_subscriptions"] == "2"
    assert summary.associations_created == 1


def test_remotely_active_account_is_deactivated(make_engine, fake_hubspot):
    account_id = fake_hubspot.seed_account("U2", active=True)

    summary = make_engine().run(HEADER + "U2,c@d.com,MP,false,0,3,0\n")

    assert summary.deactivations == 1
    updates = fake_hubspot.calls_to("batch_update_accounts")
    assert updates[0] == [
        (
            account_id,
            {
                "active_subscription": "false",
                "weekly_subscriptions": "0",
                "monthly_subscriptions": "3",
                "daily_subscriptions": "0",
            },
        )
    ]
    assert fake_hubspot.accounts[account_id]["active_subscription"] == "false"


def test_inactive_account_not_active_remotely_is_not_deactivated(make_engine, fake_hubspot):
    fake_hubspot.seed_account("U2", active=False)

    summary = make_engine().run(HEADER + "U2,c@d.com,MP,false,0,0,0\n")

    assert summary.deactivations == 0


def test_deactivated_account_keeps_subscription_history(make_engine, fake_hubspot):
    account_id = fake_hubspot.seed_account("U2", active=True)
    fake_hubspot.accounts[account_id]["ever_had_subscription"] = "true"
    fake_hubspot.seed_contact("c@d.com")

    summary = make_engine().run(HEADER + "U2,c@d.com,MP,false,0,0,0\n")

    assert summary.deactivations == 1
    assert summary.accounts_updated == 1
    assert fake_hubspot.accounts[account_id]["active_subscription"] == "false"
    assert fake_hubspot.accounts[account_id]["ever_had_subscription"] == "true"
    for _remote_id, properties in fake_hubspot.calls_to("batch_update_accounts")[-1]:
        assert "ever_had_subscription" not in properties


def test_rejected_bulk_inputs_are_counted_as_errors(make_engine, fake_hubspot):
    fake_hubspot.reject["batch_create_accounts"] = lambda props: props["id"] == "U2"

    summary = make_engine().run(HEADER + "U1,a@b.com,MP,true,0,0,0\nU2,c@d.com,MP,true,0,0,0\n")

    assert summary.accounts_created == 1
    assert summary.contacts_created == 2
    assert summary.errors == 1
    assert summary.batches_failed == 0
    assert summary.associations_created == 1
    assert summary.associations_skipped == 1
    assert fake_hubspot.account_by_business_id("U2") is None


def test_repeated_business_id_creates_one_account(make_engine, fake_hubspot):
    summary = make_engine().run(HEADER + "U1,a@b.com,MP,true,1,0,0\nU1,a@b.com,MP,true,5,0,0\n")

    assert summary.rows_read == 2
    assert (summary.accounts_created, summary.contacts_created) == (1, 1)
    assert len(fake_hubspot.accounts) == 1
    assert fake_hubspot.account_by_business_id("U1")["weekly_subscriptions"] == "5"
    assert summary.associations_created == 1


def test_shared_email_creates_one_contact_linked_to_both_accounts(make_engine, fake_hubspot):
    summary = make_engine().run(HEADER + "U1,a@b.com,MP,true,0,0,0\nU2,a@b.com,MP,true,0,0,0\n")

    assert (summary.accounts_created, summary.contacts_created) == (2, 1)
    assert summary.associations_created == 2
    assert summary.errors == 0


def test_read_phase_failure_aborts_before_writes(make_engine, fake_hubspot):
    fake_hubspot.fail["search_accounts_by_ids"] = lambda _ids: True

    with pytest.raises(ReadPhaseError):
        make_engine().run(HEADER + "U1,a@b.com,MP,true,0,0,0\n")

    assert fake_hubspot.calls_to("batch_create_accounts") == []
    assert fake_hubspot.calls_to("batch_create_contacts") == []


def test_missing_required_header_raises(make_engine):
    with pytest.raises(CSVHeaderError):
        make_engine().run("user_id,first_name\nU1,Ada\n")


def test_rerun_converges_to_updates(make_engine, fake_hubspot):
    csv_text = HEADER + "U1,a@b.com,MP,true,1,0,0\nU2,c@d.com,WIX,true,0,1,0\n"
    engine = make_engine()

    first = engine.run(csv_text)
    second = engine.run(csv_text)

    assert (first.accounts_created, first.contacts_created) == (2, 2)
    assert (second.accounts_created, second.contacts_created) == (0, 0)
    assert (second.accounts_updated, second.contacts_updated) == (2, 2)
    assert len(fake_hubspot.accounts) == 2
    assert len(fake_hubspot.contacts) == 2


def test_batches_and_waves_follow_settings(make_engine, fake_hubspot, sleeps):
    rows = "".join(f"U{i},user{i}@example.com,MP,true,0,0,0\n" for i in range(1, 8))

    summary = make_engine(batch_size=2, max_concurrency=2, wave_cooldown=0.5).run(io.StringIO(HEADER + rows))

    assert summary.batches_processed == 4
    assert summary.accounts_created == 7
    assert sleeps == [0.5]
    assert all(len(call) <= 2 for call in fake_hubspot.calls_to("batch_create_accounts"))
