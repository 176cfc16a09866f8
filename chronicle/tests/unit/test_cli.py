"""
Tests for the chronicle-admin provisioning CLI.
"""
import json

import pytest

from chronicle.cli import main
from chronicle.core.signing.keys import load_public_key, public_key_to_base64
from chronicle.core.signing.registry import load_static_clients
from chronicle.core.signing.verify import HEADER_NONCE, HEADER_SIGNATURE, HEADER_TIMESTAMP, verify_signature


@pytest.fixture(autouse=True)
def no_database(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr("chronicle.core.config._settings", None)


def test_keygen_writes_keypair(tmp_path, capsys):
    assert main(["keygen", "--out", str(tmp_path), "--name", "laptop"]) == 0

    public_key = load_public_key(tmp_path / "laptop.pub")
    assert (tmp_path / "laptop.key").exists()
    assert public_key_to_base64(public_key) in capsys.readouterr().out


def test_add_client_to_yaml(tmp_path):
    main(["keygen", "--out", str(tmp_path), "--name", "laptop"])
    public_b64 = (tmp_path / "laptop.pub").read_text().strip()
    config = tmp_path / "clients.yaml"

    assert main(["add-client", "laptop", public_b64, "--admin", "--config", str(config)]) == 0

    registry = load_static_clients(config)
    assert registry.get_client("laptop").is_admin


def test_add_client_rejects_bad_key(tmp_path, capsys):
    config = tmp_path / "clients.yaml"

    assert main(["add-client", "laptop", "garbage", "--config", str(config)]) == 1
    assert "Error" in capsys.readouterr().err
    assert not config.exists()


def test_sign_prints_verifiable_headers(tmp_path, capsys):
    main(["keygen", "--out", str(tmp_path), "--name", "laptop"])
    capsys.readouterr()

    assert main([
        "sign",
        "--key", str(tmp_path / "laptop.key"),
        "--client-id", "laptop",
        "--method", "POST",
        "--path", "/chronicle/client/whoami",
        "--body", "hello",
    ]) == 0

    headers = json.loads(capsys.readouterr().out)
    assert headers["Chronicle-Client-Key-ID"] == "laptop"
    result = verify_signature(
        public_key=load_public_key(tmp_path / "laptop.pub"),
        method="POST",
        path="/chronicle/client/whoami",
        timestamp_str=headers[HEADER_TIMESTAMP],
        nonce=headers[HEADER_NONCE],
        signatures_b64=[headers[HEADER_SIGNATURE]],
        body=b"hello",
    )
    assert result.success


def test_sign_missing_key_file(tmp_path):
    assert main(["sign", "--key", str(tmp_path / "absent.key"), "--client-id", "x", "--path", "/"]) == 1


def test_add_client_unknown_instance(tmp_path, capsys):
    config = tmp_path / "clients.yaml"

    assert main(["add-client", "laptop", "garbage", "--instance", "eu", "--config", str(config)]) == 1
    assert "Unknown instance" in capsys.readouterr().err


def test_add_client_to_instance_table(tmp_path, monkeypatch):
    main(["keygen", "--out", str(tmp_path), "--name", "laptop"])
    public_b64 = (tmp_path / "laptop.pub").read_text().strip()
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'clients.db'}")
    monkeypatch.setenv("INSTANCES", '{"eu": "eu"}')

    assert main(["add-client", "laptop", public_b64, "--instance", "eu"]) == 0

    from chronicle.core.database import DatabaseClientDirectory, init_db
    directory = DatabaseClientDirectory(init_db(f"sqlite:///{tmp_path / 'clients.db'}"))
    assert directory.list_clients() == []
    assert directory.for_prefix("eu").list_clients() == ["laptop"]
