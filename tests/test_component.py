import pytest
from botocore.exceptions import ClientError

from cf_reconcile.errors import ConvergenceFailedError, PollCancelledError, ValidationError
from cf_reconcile.models import PersistedState
from cf_reconcile.poller import Cancellation

from tests.fakes import TEMPLATE

OUTPUTS = [{"OutputKey": "BucketName", "OutputValue": "website-bucket"}]


def test_fresh_deploy_creates_stack_and_persists_identity(make_component, cfn_client, s3_client, state_store):
    cfn_client.outputs["s1"] = OUTPUTS
    component = make_component()

    outputs = component.deploy({"stackName": "s1", "template": TEMPLATE, "bucket": "b1"})

    assert outputs == {"BucketName": "website-bucket"}
    assert cfn_client.mutating_calls() == ["create_stack"]
    assert "TemplateURL" in cfn_client.calls_to("create_stack")[0]
    assert len(s3_client.objects) == 1
    assert state_store.load("website") == PersistedState(bucket="b1", region="us-east-1", stack_name="s1")


def test_second_deploy_with_same_inputs_does_not_mutate(make_component, cfn_client, s3_client):
    cfn_client.outputs["s1"] = OUTPUTS
    inputs = {"stackName": "s1", "template": TEMPLATE, "bucket": "b1", "parameters": {"Env": "prod"}}

    first = make_component().deploy(inputs)
    calls_before = len(cfn_client.mutating_calls())
    second = make_component().deploy(inputs)

    assert first == second
    assert len(cfn_client.mutating_calls()) == calls_before
    assert len(s3_client.puts) == 1


def test_changed_stack_is_updated(make_component, cfn_client):
    cfn_client.outputs["s1"] = OUTPUTS
    cfn_client.seed_stack("s1", TEMPLATE, parameters={"Env": "dev"})

    make_component().deploy({"stackName": "s1", "template": TEMPLATE, "parameters": {"Env": "prod"}})

    assert cfn_client.mutating_calls() == ["update_stack"]
    assert "TemplateBody" in cfn_client.calls_to("update_stack")[0]


def test_unchanged_stack_only_fetches_outputs(make_component, cfn_client):
    cfn_client.outputs["s1"] = OUTPUTS
    cfn_client.seed_stack("s1", TEMPLATE)

    outputs = make_component().deploy({"stackName": "s1", "template": TEMPLATE})

    assert outputs == {"BucketName": "website-bucket"}
    assert cfn_client.mutating_calls() == []


def test_bucket_is_remembered_between_deploys(make_component, cfn_client, s3_client):
    make_component().deploy({"stackName": "s1", "template": TEMPLATE, "bucket": "b1"})
    changed = {**TEMPLATE, "Description": "v2"}

    make_component().deploy({"stackName": "s1", "template": changed})

    assert [put["Bucket"] for put in s3_client.puts] == ["b1", "b1"]
    assert "TemplateURL" in cfn_client.calls_to("update_stack")[0]


def test_failed_upload_aborts_before_stack_mutation(make_component, cfn_client, s3_client, state_store):
    s3_client.fail_with = ClientError({"Error": {"Code": "NoSuchBucket", "Message": "missing"}}, "PutObject")

    with pytest.raises(ClientError):
        make_component().deploy({"stackName": "s1", "template": TEMPLATE, "bucket": "b1"})

    assert cfn_client.mutating_calls() == []
    assert state_store.load("website").is_empty()


def test_validation_happens_before_remote_calls(make_component, cfn_client, regions_used):
    with pytest.raises(ValidationError):
        make_component().deploy({"stackName": "s1"})

    assert cfn_client.calls == []
    assert regions_used == []


def test_termination_protection_synced_once(make_component, cfn_client):
    inputs = {"stackName": "s1", "template": TEMPLATE, "enableTerminationProtection": True}

    make_component().deploy(inputs)
    make_component().deploy(inputs)

    assert cfn_client.calls_to("update_termination_protection") == [
        {"EnableTerminationProtection": True, "StackName": "s1"}
    ]


def test_rename_replaces_old_stack_after_new_one_converges(make_component, cfn_client, state_store):
    make_component().deploy({"stackName": "a", "template": TEMPLATE})

    make_component().deploy({"stackName": "b", "template": TEMPLATE})

    assert cfn_client.mutating_calls() == ["create_stack", "create_stack", "delete_stack"]
    assert cfn_client.calls_to("delete_stack") == [{"StackName": "a"}]
    assert set(cfn_client.stacks) == {"b"}
    assert state_store.load("website").stack_name == "b"


def test_rename_keeps_old_stack_when_new_one_fails(make_component, cfn_client, state_store):
    make_component().deploy({"stackName": "a", "template": TEMPLATE})
    cfn_client.script["b"] = ["CREATE_IN_PROGRESS", "ROLLBACK_COMPLETE"]

    with pytest.raises(ConvergenceFailedError):
        make_component().deploy({"stackName": "b", "template": TEMPLATE})

    assert cfn_client.calls_to("delete_stack") == []
    assert "a" in cfn_client.stacks
    assert state_store.load("website").stack_name == "a"


def test_failed_replacement_does_not_fail_deploy(make_component, cfn_client, state_store):
    make_component().deploy({"stackName": "a", "template": TEMPLATE})
    cfn_client.fail_delete = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteStack")

    make_component().deploy({"stackName": "b", "template": TEMPLATE})

    assert state_store.load("website").stack_name == "b"


def test_rename_across_regions_deletes_in_old_region(make_component, regions_used):
    make_component().deploy({"stackName": "a", "template": TEMPLATE, "region": "eu-west-1"})
    regions_used.clear()

    make_component().deploy({"stackName": "b", "template": TEMPLATE, "region": "us-west-2"})

    assert regions_used == ["us-west-2", "eu-west-1"]


def test_region_move_replaces_stack_with_same_name(make_component, cfn_client, regions_used):
    make_component().deploy({"stackName": "s1", "template": TEMPLATE, "region": "eu-west-1"})
    regions_used.clear()

    make_component().deploy({"stackName": "s1", "template": TEMPLATE, "region": "us-west-2"})

    assert regions_used == ["us-west-2", "eu-west-1"]
    assert cfn_client.calls_to("delete_stack") == [{"StackName": "s1"}]


def test_cancelled_deploy_starts_no_stack_operation(make_component, cfn_client, s3_client, state_store):
    cancellation = Cancellation()
    cancellation.cancel()

    with pytest.raises(PollCancelledError):
        make_component().deploy({"stackName": "s1", "template": TEMPLATE, "bucket": "b1"}, cancellation=cancellation)

    assert state_store.load("website").is_empty()
    assert cfn_client.mutating_calls() == []
    assert s3_client.puts == []


def test_cancelled_rename_keeps_old_stack_for_next_deploy(make_component, cfn_client, state_store):
    make_component().deploy({"stackName": "a", "template": TEMPLATE})
    cfn_client.seed_stack("b", TEMPLATE)
    cancellation = Cancellation()
    cancellation.cancel()

    with pytest.raises(PollCancelledError):
        make_component().deploy({"stackName": "b", "template": TEMPLATE}, cancellation=cancellation)

    assert cfn_client.calls_to("delete_stack") == []
    assert state_store.load("website").stack_name == "a"


def test_cancelled_destroy_keeps_stack_and_state(make_component, cfn_client, state_store):
    make_component().deploy({"stackName": "s1", "template": TEMPLATE})
    cancellation = Cancellation()
    cancellation.cancel()

    with pytest.raises(PollCancelledError):
        make_component().destroy(cancellation=cancellation)

    assert "s1" in cfn_client.stacks
    assert state_store.load("website").stack_name == "s1"


def test_plan_reports_action_without_mutating(make_component, cfn_client):
    component = make_component()
    inputs = {"stackName": "s1", "template": TEMPLATE}

    assert component.plan(inputs) == "create"
    component.deploy(inputs)
    assert component.plan(inputs) == "none"
    assert component.plan({**inputs, "parameters": {"Env": "prod"}}) == "update"
    assert cfn_client.mutating_calls() == ["create_stack"]


def test_destroy_without_state_makes_no_calls(make_component, cfn_client, regions_used):
    assert make_component().destroy() == {}
    assert cfn_client.calls == []
    assert regions_used == []


def test_destroy_deletes_stack_and_clears_state(make_component, cfn_client, state_store, regions_used):
    make_component().deploy({"stackName": "s1", "template": TEMPLATE, "region": "eu-west-1", "bucket": "b1"})
    regions_used.clear()

    assert make_component().destroy() == {}

    assert "s1" not in cfn_client.stacks
    assert regions_used == ["eu-west-1"]
    assert state_store.load("website").is_empty()


def test_destroy_of_already_deleted_stack_clears_state(make_component, cfn_client, state_store):
    state_store.save("website", PersistedState(region="us-east-1", stack_name="gone"))

    assert make_component().destroy() == {}
    assert state_store.load("website").is_empty()
