import json
import re

from bookmarksync.sync.device import DEVICE_INFO_KEY, DeviceIdentity, detect_platform, generate_device_id

from fakes import FakeLocalStore


def test_device_id_format_is_stable():
    device_id = generate_device_id("host|Linux|x86_64")
    assert re.fullmatch(r"device_[0-9a-f]{16}", device_id)
    assert generate_device_id("host|Linux|x86_64") == device_id
    assert generate_device_id("other|Linux|x86_64") != device_id


def test_detect_platform():
    assert detect_platform("Windows") == "Windows"
    assert detect_platform("Darwin") == "macOS"
    assert detect_platform("FreeBSD") == "Unknown"


def test_identity_is_created_once_and_persisted():
    local = FakeLocalStore()
    first = DeviceIdentity(local, client_name="bookmarksync").get()

    stored = json.loads(local.values[DEVICE_INFO_KEY])
    assert stored["id"] == first.id
    assert "createdAt" in stored

    again = DeviceIdentity(local).get()
    assert again.id == first.id
    assert again.created_at == first.created_at


def test_name_override_and_touch():
    local = FakeLocalStore()
    identity = DeviceIdentity(local)
    original = identity.get()

    renamed = DeviceIdentity(local, name="Work laptop").get()
    assert renamed.name == "Work laptop"
    assert renamed.id == original.id

    touched = DeviceIdentity(local).touch()
    assert touched.last_active_at >= original.last_active_at


def test_corrupt_device_info_is_regenerated():
    local = FakeLocalStore()
    local.values[DEVICE_INFO_KEY] = "{broken"
    info = DeviceIdentity(local).get()
    assert info.id.startswith("device_")
