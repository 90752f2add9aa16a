"""
Config loading: packaged defaults, deep merge and CONDUIT__ env overrides.
"""
from conduit_service.core.config import apply_env_overrides, deep_merge, load_settings, mcp_settings


class TestDeepMerge:

    def test_nested_dicts_merged(self):
        base = {"mcp": {"enabled": True, "cache_ttl_sec": 300}, "model": {"name": "a"}}
        out = deep_merge(base, {"mcp": {"cache_ttl_sec": 10}})
        assert out == {"mcp": {"enabled": True, "cache_ttl_sec": 10}, "model": {"name": "a"}}
        assert base["mcp"]["cache_ttl_sec"] == 300

    def test_non_dict_replaces(self):
        assert deep_merge({"servers": [1]}, {"servers": [2]}) == {"servers": [2]}


class TestEnvOverrides:

    def test_values_parsed_as_yaml(self):
        cfg = apply_env_overrides(
            {"mcp": {"enabled": True}},
            environ={
                "CONDUIT__MCP__ENABLED": "false",
                "CONDUIT__MCP__CALL_TIMEOUT_SEC": "12.5",
                "CONDUIT__MODEL__NAME": "llama3",
                "UNRELATED": "x",
            },
        )
        assert cfg["mcp"] == {"enabled": False, "call_timeout_sec": 12.5}
        assert cfg["model"] == {"name": "llama3"}
        assert "unrelated" not in cfg

    def test_servers_list_from_env(self):
        cfg = apply_env_overrides(
            {}, environ={"CONDUIT__MCP__SERVERS": '[{"name": "W", "endpoint": "http://w/mcp"}]'}
        )
        assert cfg["mcp"]["servers"][0]["endpoint"] == "http://w/mcp"


class TestDefaults:

    def test_packaged_defaults(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_IGNORE_DEV_CONFIG", "true")
        cfg = load_settings()
        assert cfg["limits"]["max_tool_depth"] == 5
        mcp = mcp_settings(cfg)
        assert mcp["cache_ttl_sec"] == 300
        assert mcp["call_timeout_sec"] == 30
        assert mcp["connect_timeout_sec"] == 60
        assert mcp["client_name"] == "Conduit"
        assert mcp["protocol_version"] == "2024-11-05"
        assert mcp["servers"] == []

    def test_env_override_applied_on_load(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_IGNORE_DEV_CONFIG", "true")
        monkeypatch.setenv("CONDUIT__LIMITS__MAX_TOOL_DEPTH", "2")
        assert load_settings()["limits"]["max_tool_depth"] == 2

    def test_mcp_settings_fill_missing(self):
        assert mcp_settings({}) == {
            "enabled": True,
            "cache_ttl_sec": 300.0,
            "call_timeout_sec": 30.0,
            "connect_timeout_sec": 60.0,
            "client_name": "Conduit",
            "protocol_version": "2024-11-05",
            "servers": [],
        }

    def test_client_identity_from_env(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_IGNORE_DEV_CONFIG", "true")
        monkeypatch.setenv("CONDUIT__MCP__CLIENT_NAME", "my-agent")
        assert mcp_settings(load_settings())["client_name"] == "my-agent"
