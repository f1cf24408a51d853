import pytest

from dchannel.core.errors import DecryptionError, KeyNotReady
from dchannel.services.crypto import decrypt_bytes, encrypt_bytes, is_encrypted
from dchannel.services.identity import IdentityContext, IdentityStore, Keyring

TEST_PASSPHRASE = "correct horse battery staple"
TEST_WORK_FACTOR = 10


@pytest.fixture
def store(tmp_path) -> IdentityStore:
    return IdentityStore(tmp_path / "keys.json", TEST_WORK_FACTOR)


def test_unlock_creates_encrypted_file(store):
    keyring = store.unlock(TEST_PASSPHRASE)
    assert store.exists()
    data = store.path.read_bytes()
    assert is_encrypted(data)
    assert str(keyring.recipient).encode() not in data
    assert len(keyring.identities) == 1


def test_unlock_existing_file_returns_same_keys(store):
    first = store.unlock(TEST_PASSPHRASE)
    second = store.unlock(TEST_PASSPHRASE)
    assert second.recipient == first.recipient


def test_wrong_passphrase_is_rejected(store):
    store.unlock(TEST_PASSPHRASE)
    with pytest.raises(DecryptionError) as excinfo:
        store.unlock("not the passphrase")
    assert excinfo.value.stage == "identity"


def test_rotation_is_additive(store):
    original = store.unlock(TEST_PASSPHRASE)
    old_envelope = encrypt_bytes([original.recipient], b"before rotation")

    rotated = store.rotate(TEST_PASSPHRASE)

    assert rotated.recipient != original.recipient
    assert len(rotated.identities) == 2
    assert decrypt_bytes(rotated.identities, old_envelope) == b"before rotation"
    new_envelope = encrypt_bytes([rotated.recipient], b"after rotation")
    assert decrypt_bytes(rotated.identities, new_envelope) == b"after rotation"


def test_rotation_can_change_passphrase(store):
    store.unlock(TEST_PASSPHRASE)
    store.rotate(TEST_PASSPHRASE, "new passphrase")
    keyring = store.unlock("new passphrase")
    assert len(keyring.identities) == 2
    with pytest.raises(DecryptionError):
        store.unlock(TEST_PASSPHRASE)


def test_keyring_json_round_trip():
    keyring = Keyring.generate().rotated()
    restored = Keyring.from_json(keyring.to_json())
    assert restored.recipient == keyring.recipient
    assert [i.recipient for i in restored.identities] == [i.recipient for i in keyring.identities]


def test_context_requires_unlock(store):
    context = IdentityContext(store)
    assert not context.ready
    with pytest.raises(KeyNotReady):
        context.require()

    context.unlock(TEST_PASSPHRASE)
    assert context.require().recipient is not None

    context.lock()
    with pytest.raises(KeyNotReady):
        context.require()
