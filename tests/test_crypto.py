import io

import pytest

from dchannel.core.errors import (
    DecryptionError,
    EncryptionError,
    NoMatchingIdentity,
    RecipientParseError,
)
from dchannel.services.crypto import (
    ARMOR_HEADER,
    CHUNK_SIZE,
    RECIPIENT_PREFIX,
    VERSION_LINE,
    ScryptIdentity,
    ScryptRecipient,
    X25519Identity,
    X25519Recipient,
    decrypt,
    decrypt_bytes,
    encrypt,
    encrypt_bytes,
    is_encrypted,
    parse_identity,
    parse_recipient,
)


@pytest.fixture
def alice() -> X25519Identity:
    return X25519Identity.generate()


@pytest.fixture
def bob() -> X25519Identity:
    return X25519Identity.generate()


def test_recipient_text_form_round_trips(alice):
    text = str(alice.recipient)
    assert text.startswith(RECIPIENT_PREFIX)
    assert parse_recipient(text) == alice.recipient
    assert parse_recipient(text.upper()) == alice.recipient


def test_identity_text_form_round_trips(alice):
    parsed = parse_identity(str(alice))
    assert parsed.recipient == alice.recipient


@pytest.mark.parametrize("text", ["", "age1abc", "dcage1!!!!", RECIPIENT_PREFIX + "aaaa"])
def test_parse_recipient_rejects_garbage(text):
    with pytest.raises(RecipientParseError):
        parse_recipient(text)


def test_armored_envelope_decrypts_for_each_recipient(alice, bob):
    envelope = encrypt_bytes([alice.recipient, bob.recipient], b"hello")
    assert envelope.startswith(ARMOR_HEADER)
    assert decrypt_bytes([alice], envelope) == b"hello"
    assert decrypt_bytes([bob], envelope) == b"hello"


def test_binary_envelope_is_detected(alice):
    envelope = encrypt_bytes([alice.recipient], b"payload", armored=False)
    assert is_encrypted(envelope)
    assert not envelope.startswith(ARMOR_HEADER)
    assert decrypt_bytes([alice], envelope) == b"payload"


def test_multi_chunk_payload(alice):
    data = bytes(range(256)) * (CHUNK_SIZE // 256) * 2 + b"tail"
    src, dst, out = io.BytesIO(data), io.BytesIO(), io.BytesIO()
    encrypt([alice.recipient], src, dst, armored=False)
    decrypt([alice], io.BytesIO(dst.getvalue()), out)
    assert out.getvalue() == data


def test_empty_payload(alice):
    assert decrypt_bytes([alice], encrypt_bytes([alice.recipient], b"")) == b""


def test_plaintext_passes_through_without_identities():
    assert decrypt_bytes([], b'{"body": "hello"}') == b'{"body": "hello"}'
    assert not is_encrypted(b'{"body": "hello"}')


def test_wrong_identity_raises_no_matching_identity(alice, bob):
    envelope = encrypt_bytes([alice.recipient], b"secret")
    with pytest.raises(NoMatchingIdentity):
        decrypt_bytes([bob], envelope)


def test_envelope_without_identities_raises(alice):
    with pytest.raises(NoMatchingIdentity):
        decrypt_bytes([], encrypt_bytes([alice.recipient], b"secret"))


def test_tampered_payload_fails_authentication(alice):
    envelope = bytearray(encrypt_bytes([alice.recipient], b"secret", armored=False))
    envelope[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        decrypt_bytes([alice], bytes(envelope))


def test_encrypt_requires_a_recipient():
    with pytest.raises(EncryptionError):
        encrypt_bytes([], b"data")


def test_scrypt_recipient_round_trip():
    envelope = encrypt_bytes([ScryptRecipient("passphrase", work_factor=10)], b"keys")
    assert decrypt_bytes([ScryptIdentity("passphrase")], envelope) == b"keys"
    with pytest.raises(DecryptionError):
        decrypt_bytes([ScryptIdentity("wrong")], envelope)


def test_scrypt_recipient_must_be_alone(alice):
    with pytest.raises(EncryptionError):
        encrypt_bytes([ScryptRecipient("passphrase", work_factor=10), alice.recipient], b"x")


def test_recipients_compare_by_key(alice):
    again = X25519Recipient.parse(str(alice.recipient))
    assert again == alice.recipient
    assert len({again, alice.recipient}) == 1


def test_non_ascii_header_line_is_a_decryption_error():
    envelope = VERSION_LINE + b"\n-> X25519 AAAA\n\xff\xfe\n--- AAAA\n"
    with pytest.raises(DecryptionError):
        decrypt_bytes([], envelope)


def test_non_ascii_stanza_argument_is_a_decryption_error(alice):
    envelope = VERSION_LINE + "\n-> X25519 éé\nAAAA\n--- AAAA\n".encode()
    with pytest.raises(DecryptionError):
        decrypt_bytes([alice], envelope)
