import json

from convoy.config import get_identity_file
from convoy.identity import Identity, generate_user_id, load_identity, remember_name, save_identity


def test_generated_ids_look_right():
    user_id = generate_user_id()
    assert user_id.startswith("user_")
    assert len(user_id) == 14
    assert generate_user_id() != user_id


def test_identity_is_created_once(tmp_path):
    path = tmp_path / "identity.json"
    first = load_identity(path)
    assert path.exists()
    assert load_identity(path) == first


def test_default_location_follows_config_dir(tmp_path):
    identity = load_identity()
    assert get_identity_file().parent == tmp_path / "config"
    assert json.loads(get_identity_file().read_text())["user_id"] == identity.user_id


def test_env_overrides_id_but_keeps_name(tmp_path, monkeypatch):
    path = tmp_path / "identity.json"
    save_identity(Identity(user_id="user_saved", name="Hana"), path)
    monkeypatch.setenv("CONVOY_USER_ID", "user_env")
    assert load_identity(path) == Identity(user_id="user_env", name="Hana")


def test_remember_name_persists(tmp_path):
    path = tmp_path / "identity.json"
    identity = load_identity(path)
    remember_name(identity, "Ravi", path)
    assert load_identity(path).name == "Ravi"


def test_corrupt_file_is_replaced(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text("{not json")
    identity = load_identity(path)
    assert identity.user_id.startswith("user_")
    assert json.loads(path.read_text())["user_id"] == identity.user_id
