import pytest
from pydantic import ValidationError

from nodepool_failover.core.exceptions import ConfigurationError
from nodepool_failover.core.provisioning import Candidate, NodePoolParameters
from nodepool_failover.core.provisioning.executor import coerce_parameters


def make(**kwargs) -> NodePoolParameters:
    return NodePoolParameters(resource_group="rg-aks", cluster_name="aks-prod", **kwargs)


def test_defaults_match_cli_defaults() -> None:
    params = make()
    assert params.pool_name == "memnp"
    assert (params.node_count, params.min_count, params.max_count) == (2, 1, 5)
    assert params.mode == "User"
    assert params.os_sku == "Ubuntu"
    assert params.zones == ()
    assert params.spot is False


def test_request_is_immutable() -> None:
    request = make().for_candidate(Candidate("Standard_E8s_v5", 1))
    assert request.sku == "Standard_E8s_v5"
    with pytest.raises(ValidationError):
        request.parameters.node_count = 3  # type: ignore[misc]


def test_labels_and_taints_are_parsed() -> None:
    params = make(
        node_labels="workload=memory,kubernetes.azure.com/team=data",
        node_taints="workload=memory:NoSchedule",
    )
    assert params.labels == {"workload": "memory", "kubernetes.azure.com/team": "data"}
    assert params.taints == ["workload=memory:NoSchedule"]


def test_blank_optional_strings_become_none() -> None:
    params = make(node_labels="  ", kubernetes_version="", ssh_key=None)
    assert params.node_labels is None
    assert params.kubernetes_version is None
    assert params.labels == {}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"node_labels": "workload"},
        {"node_taints": "workload=memory"},
        {"node_taints": "workload=memory:Sometimes"},
        {"pool_name": "Mem-Pool"},
        {"pool_name": "averyveryverylongname"},
        {"min_count": 4, "max_count": 3},
        {"node_count": 9},
        {"os_sku": "Windows2022"},
        {"zones": ["1", ""]},
    ],
)
def test_invalid_values_are_rejected(kwargs) -> None:
    with pytest.raises(ValidationError):
        make(**kwargs)


def test_zones_accept_space_separated_string() -> None:
    assert make(zones="1 2 3").zones == ("1", "2", "3")


def test_coerce_parameters_maps_validation_error() -> None:
    with pytest.raises(ConfigurationError) as exc:
        coerce_parameters({"resource_group": "rg", "cluster_name": "aks", "pool_name": "BAD"})
    assert exc.value.field == "pool_name"


def test_coerce_parameters_requires_cluster() -> None:
    with pytest.raises(ConfigurationError) as exc:
        coerce_parameters({"resource_group": "rg"})
    assert exc.value.field == "cluster_name"


def test_coerce_parameters_passes_models_through() -> None:
    params = make()
    assert coerce_parameters(params) is params
