from jivaop.config import Config, default_config


def test_default_config_is_empty():
    cfg = default_config()
    assert cfg == Config()
    assert cfg.driver_name == ""
    assert cfg.plugin_type == ""
    assert cfg.version == ""
    assert cfg.endpoint == ""
    assert cfg.node_id == ""


def test_default_config_returns_fresh_instances():
    first = default_config()
    second = default_config()
    first.node_id = "node-a"
    assert second.node_id == ""
    assert first is not second


def test_config_fields_can_be_set():
    cfg = Config(driver_name="jiva.csi.openebs.io", plugin_type="node", node_id="node-a")
    assert cfg.driver_name == "jiva.csi.openebs.io"
    assert cfg.plugin_type == "node"
    assert cfg.node_id == "node-a"
    assert cfg != default_config()