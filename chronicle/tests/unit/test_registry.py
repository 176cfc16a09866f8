"""
Tests for key helpers and the YAML-backed static client directory.
"""
import base64
import stat

import pytest
import yaml

from chronicle.core.signing.errors import ClientNotFound
from chronicle.core.signing.keys import (
    base64_to_public_key,
    generate_keypair,
    keys_equal,
    load_private_key,
    load_public_key,
    public_key_to_base64,
    save_keypair,
)
from chronicle.core.signing.registry import (
    StaticClientRegistry,
    add_client_to_yaml,
    load_static_clients,
)


@pytest.fixture
def public_b64():
    _, public_key = generate_keypair()
    return public_key_to_base64(public_key)


class TestKeys:

    def test_base64_round_trip(self):
        _, public_key = generate_keypair()
        assert keys_equal(base64_to_public_key(public_key_to_base64(public_key)), public_key)

    @pytest.mark.parametrize("value", [
        "not base64!",
        base64.b64encode(b"short").decode(),
        base64.b64encode(b"\x00" * 33).decode(),
    ])
    def test_invalid_public_key(self, value):
        with pytest.raises(ValueError):
            base64_to_public_key(value)

    def test_keys_equal_distinguishes_keys(self):
        _, first = generate_keypair()
        _, second = generate_keypair()
        assert keys_equal(first, first)
        assert not keys_equal(first, second)

    def test_save_and_load(self, tmp_path):
        private_key, public_key = generate_keypair()

        private_path, public_path = save_keypair(private_key, tmp_path / "keys", name="laptop")

        assert private_path.name == "laptop.key"
        assert stat.S_IMODE(private_path.stat().st_mode) == 0o600
        assert keys_equal(load_private_key(private_path).public_key(), public_key)
        assert keys_equal(load_public_key(public_path), public_key)


class TestStaticClientRegistry:

    def _write(self, path, clients):
        path.write_text(yaml.safe_dump({"clients": clients}))
        return path

    def test_load_from_yaml(self, tmp_path, public_b64):
        path = self._write(tmp_path / "clients.yaml", {
            "replica": {"public_key": public_b64},
            "ops": {"public_key": public_b64, "is_admin": True, "description": "Operator"},
        })
        registry = StaticClientRegistry()

        registry.load_from_yaml(path)

        assert registry.is_loaded
        assert sorted(registry.list_clients()) == ["ops", "replica"]
        assert registry.get_client("ops").description == "Operator"
        assert public_key_to_base64(registry.resolve("replica")) == public_b64

    def test_admin_only_resolution(self, tmp_path, public_b64):
        registry = load_static_clients(self._write(tmp_path / "clients.yaml", {
            "replica": {"public_key": public_b64},
            "ops": {"public_key": public_b64, "is_admin": True},
        }))

        registry.resolve("ops", admin_only=True)
        with pytest.raises(ClientNotFound):
            registry.resolve("replica", admin_only=True)

    def test_disabled_client_not_resolved(self, tmp_path, public_b64):
        registry = load_static_clients(self._write(tmp_path / "clients.yaml", {
            "old": {"public_key": public_b64, "enabled": False},
        }))

        assert registry.get_client("old") is None
        with pytest.raises(ClientNotFound):
            registry.resolve("old")

    def test_lookup_is_exact(self, tmp_path, public_b64):
        registry = load_static_clients(self._write(tmp_path / "clients.yaml", {
            "replica": {"public_key": public_b64},
        }))

        for candidate in ("Replica", " replica", "replica "):
            with pytest.raises(ClientNotFound):
                registry.resolve(candidate)

    @pytest.mark.parametrize("entry", [{}, {"public_key": "garbage"}, ["not", "a", "mapping"]])
    def test_invalid_entry_rejected(self, tmp_path, entry):
        path = self._write(tmp_path / "clients.yaml", {"broken": entry})

        with pytest.raises(ValueError, match="broken"):
            load_static_clients(path)

    @pytest.mark.parametrize("flag, value", [
        ("is_admin", "false"),
        ("is_admin", "yes"),
        ("is_admin", 1),
        ("enabled", "false"),
        ("enabled", None),
    ])
    def test_non_boolean_flag_rejected(self, tmp_path, public_b64, flag, value):
        path = self._write(tmp_path / "clients.yaml", {"broken": {"public_key": public_b64, flag: value}})

        with pytest.raises(ValueError, match=flag):
            load_static_clients(path)

    @pytest.mark.parametrize("document", ["- just\n- a list\n", "plain scalar\n", "clients:\n  - replica\n"])
    def test_malformed_document_rejected(self, tmp_path, document):
        path = tmp_path / "clients.yaml"
        path.write_text(document)

        with pytest.raises(ValueError, match="must be a mapping"):
            load_static_clients(path)

    def test_missing_file_gives_empty_registry(self, tmp_path):
        registry = load_static_clients(tmp_path / "absent.yaml")

        assert registry.is_loaded
        assert registry.list_clients() == []

    def test_each_load_returns_new_registry(self, tmp_path, public_b64):
        path = self._write(tmp_path / "clients.yaml", {"replica": {"public_key": public_b64}})
        assert load_static_clients(path) is not load_static_clients(path)


class TestAddClientToYaml:

    def test_creates_file(self, tmp_path, public_b64):
        path = tmp_path / "nested" / "clients.yaml"

        add_client_to_yaml(path, "replica", public_b64, description="EU replica")

        registry = load_static_clients(path)
        assert registry.get_client("replica").description == "EU replica"
        assert not registry.get_client("replica").is_admin

    def test_preserves_existing_clients(self, tmp_path, public_b64):
        path = tmp_path / "clients.yaml"
        add_client_to_yaml(path, "first", public_b64)
        add_client_to_yaml(path, "second", public_b64, is_admin=True)

        registry = load_static_clients(path)
        assert sorted(registry.list_clients()) == ["first", "second"]
        assert registry.get_client("second").is_admin

    def test_invalid_key_never_written(self, tmp_path):
        path = tmp_path / "clients.yaml"

        with pytest.raises(ValueError):
            add_client_to_yaml(path, "replica", "garbage")

        assert not path.exists()

    def test_malformed_existing_file_left_alone(self, tmp_path, public_b64):
        path = tmp_path / "clients.yaml"
        path.write_text("clients:\n  - replica\n")

        with pytest.raises(ValueError):
            add_client_to_yaml(path, "second", public_b64)

        assert path.read_text() == "clients:\n  - replica\n"
