import asyncio
import stat
import threading
import pytest
from mosquitto_turnkey.core.models import TurnkeySettings, resolve_config
from mosquitto_turnkey.render.artifacts import (
    ACL_FILE,
    CERT_FILE,
    CONFIG_FILE,
    KEY_FILE,
    PASSWD_FILE,
    certificate_names,
    render_acl,
    render_config,
    requires_tls,
    write_artifact,
    write_artifacts,
)


def _lines(text):
    return [line.split() for line in text.splitlines() if line.strip() and not line.startswith("#")]


def test_render_builtin_auth():
    text = render_config(resolve_config({"native": True}))

    assert ["acl_file", f"./{ACL_FILE}"] in _lines(text)
    assert ["password_file", f"./{PASSWD_FILE}"] in _lines(text)
    assert ["allow_anonymous", "true"] in _lines(text)
    assert "plugin" not in text


def test_render_plugin_auth():
    settings = TurnkeySettings(auth_plugin_path="/opt/go-auth.so")
    text = render_config(resolve_config({"native": True, "auth": "plugin"}), settings)

    lines = _lines(text)
    assert ["plugin", "/opt/go-auth.so"] in lines
    assert ["auth_opt_backends", "files"] in lines
    assert ["auth_opt_files_password_path", f"./{PASSWD_FILE}"] in lines
    assert ["auth_opt_files_acl_path", f"./{ACL_FILE}"] in lines
    assert ["auth_opt_allow_anonymous", "true"] in lines
    assert "password_file" not in text


def test_render_logging_stanza():
    lines = _lines(render_config(resolve_config({"native": True})))

    assert ["log_dest", "stderr"] in lines
    log_types = [line[1] for line in lines if line[0] == "log_type"]
    assert log_types == [
        "error", "warning", "notice", "information",
        "subscribe", "unsubscribe", "websockets", "debug",
    ]


def test_render_persistence_disabled():
    lines = _lines(render_config(resolve_config({"native": True, "persistence": False})))

    assert ["persistence", "false"] in lines
    assert ["autosave_on_changes", "false"] in lines
    assert not any(line[0] == "persistence_location" for line in lines)


def test_render_persistence_native_uses_working_directory():
    lines = _lines(render_config(resolve_config({"native": True, "persistence": True})))

    assert ["persistence", "true"] in lines
    assert ["persistence_location", "./"] in lines
    assert ["persistence_file", "mosquitto.db"] in lines
    assert ["autosave_interval", "1800"] in lines


def test_render_persistence_container_location():
    lines = _lines(render_config(resolve_config({"native": False, "persistence": True})))
    assert ["persistence_location", "/app/var/mosquitto.d/"] in lines


def test_render_stanza_order():
    config = resolve_config({
        "native": True,
        "custom": "max_keepalive 120",
        "listen": [{"protocol": "mqtt", "address": "127.0.0.1", "port": 1883}],
    })
    text = render_config(config)

    positions = [
        text.index("#   logging"),
        text.index("#   security"),
        text.index("#   persistence"),
        text.index("max_keepalive 120"),
        text.index("#   listener"),
    ]
    assert positions == sorted(positions)


def test_render_listener_stanzas():
    config = resolve_config({
        "native": True,
        "listen": [
            {"protocol": "mqtt", "address": "127.0.0.1", "port": 1883},
            {"protocol": "wss", "name": "broker.local", "address": "::1", "port": 8443},
        ],
    })
    text = render_config(config)
    plain, secure = text.split("#   listener")[1:]

    assert ["listener", "1883", "127.0.0.1"] in _lines(plain)
    assert ["max_connections", "-1"] in _lines(plain)
    assert ["set_tcp_nodelay", "true"] in _lines(plain)
    assert ["protocol", "mqtt"] in _lines(plain)
    assert "certfile" not in plain

    assert ["listener", "8443", "::1"] in _lines(secure)
    assert ["protocol", "websockets"] in _lines(secure)
    assert ["certfile", f"./{CERT_FILE}"] in _lines(secure)
    assert ["keyfile", f"./{KEY_FILE}"] in _lines(secure)
    assert ["require_certificate", "false"] in _lines(secure)


def test_render_container_binds_wildcard():
    config = resolve_config({
        "native": False,
        "listen": [{"protocol": "mqtt", "address": "127.0.0.1", "port": 1883}],
    })
    assert ["listener", "1883", "0.0.0.0"] in _lines(render_config(config))


def test_render_without_custom_text():
    text = render_config(resolve_config({"native": True}))
    between = text[text.index("#   persistence"):text.index("#   listener")]
    assert [line[0] for line in _lines(between)] == ["persistence", "autosave_on_changes"]


def test_default_acl_has_one_block_per_account():
    config = resolve_config({"passwd": [
        {"username": "example", "password": "example"},
        {"username": "sensor", "password": "s3cret"},
    ]})
    lines = _lines(render_acl(config))

    assert ["topic", "read", "$SYS/#"] in lines
    assert ["pattern", "write", "$SYS/broker/connection/%c/state"] in lines
    assert ["pattern", "read", "peer/%c"] in lines
    for username in ("example", "sensor"):
        assert ["user", username] in lines
        assert ["topic", "readwrite", f"{username}/#"] in lines
        assert ["topic", "read", f"{username}/$share/#"] in lines
    assert lines.count(["topic", "write", "peer/#"]) == 2
    assert "topic   readwrite  example/#" in render_acl(config)


def test_default_acl_without_accounts():
    lines = _lines(render_acl(resolve_config({"passwd": []})))
    assert not any(line[0] == "user" for line in lines)
    assert len(lines) == 3


def test_raw_acl_is_used_verbatim():
    raw = "topic readwrite #\n"
    assert render_acl(resolve_config({"acl": raw})) == raw


def test_certificate_names_are_distinct_and_ordered():
    config = resolve_config({"listen": [
        {"protocol": "mqtts", "name": "b.local", "address": "127.0.0.1", "port": 8883},
        {"protocol": "wss", "name": "a.local", "address": "127.0.0.1", "port": 8443},
        {"protocol": "mqtt", "name": "b.local", "address": "127.0.0.1", "port": 1883},
        {"protocol": "ws", "address": "127.0.0.1", "port": 8080},
    ]})

    assert certificate_names(config) == ["b.local", "a.local"]
    assert requires_tls(config) is True
    assert requires_tls(resolve_config()) is False


def test_write_artifact_mode(tmp_path):
    path = write_artifact(tmp_path / "artifact.txt", "content")

    assert path.read_text() == "content"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_write_artifact_tightens_existing_file(tmp_path):
    path = tmp_path / "artifact.txt"
    path.write_text("old")
    path.chmod(0o644)

    write_artifact(path, b"new")
    assert path.read_bytes() == b"new"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_write_artifacts_without_tls(tmp_path):
    config = resolve_config({"native": True})
    artifacts = asyncio.run(write_artifacts(config, tmp_path, provision=False))

    assert artifacts.config_file == tmp_path / CONFIG_FILE
    assert artifacts.acl_file == tmp_path / ACL_FILE
    assert artifacts.passwd_file is None
    assert artifacts.tls is False
    assert not (tmp_path / CERT_FILE).exists()
    assert not (tmp_path / KEY_FILE).exists()
    assert not (tmp_path / PASSWD_FILE).exists()
    for path in (artifacts.config_file, artifacts.acl_file):
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_write_artifacts_with_tls(tmp_path):
    config = resolve_config({
        "native": True,
        "listen": [{"protocol": "mqtts", "name": "localhost", "address": "127.0.0.1", "port": 8883}],
    })
    artifacts = asyncio.run(write_artifacts(config, tmp_path, provision=False))

    assert artifacts.tls is True
    assert artifacts.cert_file.read_bytes().startswith(b"-----BEGIN CERTIFICATE-----")
    assert b"PRIVATE KEY" in artifacts.key_file.read_bytes()
    assert stat.S_IMODE(artifacts.key_file.stat().st_mode) == 0o600


def test_write_artifacts_generates_certificate_off_the_event_loop(tmp_path, monkeypatch):
    from mosquitto_turnkey.render import tls

    threads = []
    real_generate = tls.generate_self_signed

    def recording_generate(names=None):
        threads.append(threading.current_thread())
        return real_generate(names)

    monkeypatch.setattr(tls, "generate_self_signed", recording_generate)
    config = resolve_config({
        "native": True,
        "listen": [{"protocol": "wss", "name": "localhost", "address": "127.0.0.1", "port": 8443}],
    })

    async def scenario():
        ticks = []

        async def tick():
            while True:
                ticks.append(None)
                await asyncio.sleep(0)

        ticker = asyncio.ensure_future(tick())
        await asyncio.sleep(0)
        artifacts = await write_artifacts(config, tmp_path, provision=False)
        ticker.cancel()
        return artifacts, len(ticks)

    artifacts, ticks = asyncio.run(scenario())
    assert artifacts.tls
    assert threads and threads[0] is not threading.main_thread()
    assert ticks > 1


def test_write_artifacts_provisions_credentials(tmp_path, fake_bin):
    config = resolve_config({"native": True})
    artifacts = asyncio.run(write_artifacts(config, tmp_path))

    assert artifacts.passwd_file == tmp_path / PASSWD_FILE
    assert artifacts.passwd_file.read_text().startswith("example:")


def test_render_config_rejects_unknown_auth():
    from mosquitto_turnkey.utils.diagnostics import MosquittoConfigError

    config = resolve_config({"native": True}).model_copy(update={"auth": "ldap"})
    with pytest.raises(MosquittoConfigError):
        render_config(config)
