from shelf.security import (
    hash_credential,
    hash_credential_async,
    verify_against_placeholder,
    verify_credential,
    verify_credential_async,
)


def test_hash_is_salted_and_verifiable():
    first = hash_credential("Secret123", rounds=4)
    second = hash_credential("Secret123", rounds=4)

    assert first != second
    assert first.startswith("$2")
    assert verify_credential("Secret123", first)
    assert not verify_credential("secret123", first)


def test_long_credentials_are_truncated_consistently():
    long_secret = "A1" + "x" * 100
    hashed = hash_credential(long_secret, rounds=4)

    assert verify_credential(long_secret, hashed)
    # Only the first 72 bytes take part
    assert verify_credential(long_secret[:72] + "different tail", hashed)


def test_malformed_or_empty_inputs_never_match():
    assert verify_credential("Secret123", "not-a-bcrypt-hash") is False
    assert verify_credential("", hash_credential("x", rounds=4)) is False
    assert verify_credential("Secret123", "") is False


async def test_async_helpers_run_off_loop():
    hashed = await hash_credential_async("Secret123", rounds=4)

    assert await verify_credential_async("Secret123", hashed)


async def test_placeholder_check_never_matches():
    assert await verify_against_placeholder("Secret123", rounds=4) is False
    assert await verify_against_placeholder("", rounds=4) is False
