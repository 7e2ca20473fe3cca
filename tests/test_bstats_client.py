import pytest
import requests

from plugin_dashboard.bstats_client import BStatsClient, normalize_name, validate_mapping
from plugin_dashboard.errors import NetworkFailure, ParseFailure, RemoteFailure, ValidationFailure

PLUGINS = [
    {"id": 11, "name": "DP-Ban", "owner": {"id": 1, "name": "dpdev"},
     "software": {"id": 1, "name": "Bukkit / Spigot", "url": "bukkit"}, "isGlobal": False},
    {"id": 12, "name": "DPP-Core", "owner": {"id": 1, "name": "dpdev"},
     "software": {"id": 1, "name": "Bukkit / Spigot", "url": "bukkit"}, "isGlobal": False},
    {"id": 13, "name": "SuperVirtualStorageXL", "owner": {"id": 2, "name": "someone"},
     "software": {"id": 1, "name": "Bukkit / Spigot", "url": "bukkit"}, "isGlobal": False},
    {"id": 14, "name": "Unrelated", "owner": {"id": 3, "name": "Shop_Keeper"},
     "software": {"id": 1, "name": "Bukkit / Spigot", "url": "bukkit"}, "isGlobal": True},
]


def route(respond, routes):
    """side_effect serving canned bodies by URL suffix."""
    def get(url, **kwargs):
        for suffix, response in routes.items():
            if url.endswith(suffix):
                return response
        return respond(404, {"message": "not found"}, reason="Not Found")
    return get


@pytest.fixture
def client(store, context, session):
    return BStatsClient(store, context, session=session)


def test_normalize_name_strips_case_and_separators():
    assert normalize_name("DP_Ban") == "dpban"
    assert normalize_name(" dp - ban ") == "dpban"


def test_find_plugin_by_name_is_case_and_separator_insensitive(client, session, respond):
    session.get.side_effect = route(respond, {"/api/v1/plugins": respond(200, PLUGINS)})

    first = client.find_plugin_by_name("dp-ban")
    second = client.find_plugin_by_name("DP_Ban")

    assert first.id == 11
    assert second == first
    # directory fetched once, then served from cache
    assert session.get.call_count == 1


def test_find_plugin_by_name_falls_back_to_containment(client, session, respond):
    session.get.side_effect = route(respond, {"/api/v1/plugins": respond(200, PLUGINS)})

    assert client.find_plugin_by_name("VirtualStorage").id == 13


def test_find_plugin_by_name_falls_back_to_owner(client, session, respond):
    session.get.side_effect = route(respond, {"/api/v1/plugins": respond(200, PLUGINS)})

    assert client.find_plugin_by_name("shop-keeper").id == 14


def test_find_plugin_by_name_returns_none_without_match(client, session, respond):
    session.get.side_effect = route(respond, {"/api/v1/plugins": respond(200, PLUGINS)})

    assert client.find_plugin_by_name("Nothing-Like-It") is None


def test_manual_mapping_takes_precedence(client, session, respond):
    session.get.side_effect = route(respond, {
        "/api/v1/plugins": respond(200, PLUGINS),
        "/api/v1/plugins/24432": respond(200, {"id": 24432, "name": "DPP-Core", "owner": {"name": "dpdev"}}),
    })

    plugin = client.find_plugin_for_repo("dpp-core")

    assert plugin.id == 24432


def test_mapping_detail_failure_falls_through_to_name_match(client, session, respond):
    session.get.side_effect = route(respond, {
        "/api/v1/plugins": respond(200, PLUGINS),
        "/api/v1/plugins/24432": respond(500, text="oops", reason="Server Error"),
    })

    plugin = client.find_plugin_for_repo("DPP-Core")

    assert plugin.id == 12


def test_unmapped_repo_uses_name_matching(client, session, respond):
    session.get.side_effect = route(respond, {"/api/v1/plugins": respond(200, PLUGINS)})

    assert client.find_plugin_for_repo("SuperVirtualStorageXL").id == 13


def test_chart_data_cache_key_includes_max_elements(client, session, respond):
    session.get.side_effect = route(respond, {
        "/charts/servers/data?maxElements=30": respond(200, [[1, 2]]),
        "/charts/servers/data?maxElements=500": respond(200, [[1, 2], [3, 4]]),
        "/charts/servers/data": respond(200, [[1, 2], [3, 4], [5, 6]]),
    })

    assert client.fetch_chart_data(11, "servers", 30) == [[1, 2]]
    assert client.fetch_chart_data(11, "servers", 500) == [[1, 2], [3, 4]]
    assert len(client.fetch_chart_data(11, "servers")) == 3
    assert client.fetch_chart_data(11, "servers", 30) == [[1, 2]]
    assert session.get.call_count == 3


def test_plugin_charts_are_parsed_in_order(client, session, respond):
    session.get.side_effect = route(respond, {
        "/api/v1/plugins/11/charts": respond(200, {
            "servers": {"uid": 1, "type": "single_linechart", "position": 0, "title": "Servers", "isDefault": True},
            "os": {"uid": 2, "type": "advanced_pie", "position": 1, "title": "Operating System", "isDefault": False},
        }),
    })

    charts = client.fetch_plugin_charts(11)

    assert list(charts) == ["servers", "os"]
    assert charts["servers"].is_default
    assert charts["os"].type == "advanced_pie"


def test_empty_body_is_an_empty_object(client, session, respond):
    session.get.return_value = respond(200, text="")

    assert client.fetch_chart_data(11, "empty") == {}


def test_error_status_carries_parsed_body(client, session, respond):
    session.get.return_value = respond(503, {"error": "maintenance"}, reason="Service Unavailable")

    with pytest.raises(RemoteFailure) as excinfo:
        client.fetch_all_plugins()

    assert excinfo.value.status == 503
    assert excinfo.value.body == {"error": "maintenance"}


def test_malformed_json_raises_parse_failure(client, session, respond):
    session.get.return_value = respond(200, text="{broken")

    with pytest.raises(ParseFailure):
        client.fetch_plugin_charts(11)


def test_network_errors_are_wrapped(client, session):
    session.get.side_effect = requests.ConnectionError("dns failure")

    with pytest.raises(NetworkFailure):
        client.fetch_all_plugins()


def test_probe_reports_success_without_caching(client, session, respond):
    session.get.return_value = respond(200, [{"id": 1}])

    result = client.test_bstats_api()
    client.test_bstats_api()

    assert result.ok
    assert result.status == 200
    assert result.body == [{"id": 1}]
    assert session.get.call_count == 2
    assert session.get.call_args.kwargs["timeout"] == 10


def test_probe_reports_timeout(client, session):
    session.get.side_effect = requests.Timeout("read timed out")

    result = client.test_bstats_api("/api/v1/plugins", timeout_ms=1500)

    assert not result.ok
    assert result.error == "Network error: Timed out after 1500ms"


def test_probe_reports_http_errors(client, session, respond):
    session.get.return_value = respond(502, text="Bad gateway", reason="Bad Gateway")

    result = client.test_bstats_api()

    assert not result.ok
    assert result.status == 502
    assert result.body == "Bad gateway"
    assert result.error == "HTTP 502 Bad Gateway"


def test_validate_mapping_accepts_json_text():
    assert validate_mapping('{"DP-Ban": 27745, "DP-Cash": 26291.0}') == {"DP-Ban": 27745, "DP-Cash": 26291}


@pytest.mark.parametrize("raw", ['[1, 2]', '"text"', '42'])
def test_validate_mapping_rejects_non_objects(raw):
    with pytest.raises(ValidationFailure) as excinfo:
        validate_mapping(raw)

    assert "JSON object" in str(excinfo.value)


def test_validate_mapping_names_the_offending_field():
    with pytest.raises(ValidationFailure) as excinfo:
        validate_mapping({"DP-Ban": 27745, "Foo": "bar"})

    assert excinfo.value.field == "Foo"
    assert "'Foo'" in str(excinfo.value)


def test_validate_mapping_rejects_invalid_json():
    with pytest.raises(ValidationFailure):
        validate_mapping("{not json")


def test_plugin_directory_keeps_owner_and_software(client, session, respond):
    session.get.return_value = respond(200, PLUGINS)

    plugin = client.fetch_all_plugins()[3]

    assert plugin.owner_id == 3
    assert plugin.owner_name == "Shop_Keeper"
    assert plugin.software_id == 1
    assert plugin.software_name == "Bukkit / Spigot"
    assert plugin.software_url == "bukkit"
    assert plugin.is_global is True
