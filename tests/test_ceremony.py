import pytest
from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    PublicKeyCredentialType,
    UserVerificationRequirement,
)

from ceremony import (
    DEFAULT_TIMEOUT_MS,
    CeremonyOptionBuilder,
    CreateCeremonyOptions,
    GetCeremonyOptions,
    merge_descriptors,
)
from crypto_utils import from_buffer

SITE_DEFAULTS = {
    "rp": {"id": "example.com", "name": "Example Site"},
    "timeout": 30000,
}


@pytest.fixture
def builder(seeded_random):
    return CeremonyOptionBuilder("https://login.example.com", random=seeded_random)


def test_builder_uses_origin_host(builder):
    assert builder.host == "login.example.com"
    assert CeremonyOptionBuilder("example.org").host == "example.org"


def test_caller_rp_name_keeps_default_rp_id(builder):
    options = builder.build_create_options({"rp": {"name": "X"}}, SITE_DEFAULTS)
    assert isinstance(options, CreateCeremonyOptions)
    assert options.rp.id == "example.com"
    assert options.rp.name == "X"
    assert options.timeout == 30000


def test_create_built_in_fallbacks(builder):
    options = builder.build_create_options()
    assert options.rp.id == "login.example.com"
    assert options.rp.name == "login.example.com"
    assert options.user.name == "user@login.example.com"
    assert options.user.display_name == "User"
    assert len(options.user.id) == 16
    assert [p.alg for p in options.pub_key_cred_params] == [-7, -257]
    assert all(p.type == PublicKeyCredentialType.PUBLIC_KEY for p in options.pub_key_cred_params)
    assert options.timeout == DEFAULT_TIMEOUT_MS
    assert options.attestation == AttestationConveyancePreference.NONE
    assert options.authenticator_selection is None
    assert options.exclude_credentials is None
    assert options.extensions is None
    assert len(options.challenge) == 32


def test_caller_challenge_is_decoded(builder):
    challenge = b"0123456789abcdef0123"
    options = builder.build_create_options({"challenge": from_buffer(challenge)})
    assert options.challenge == challenge

    options = builder.build_get_options({"challenge": challenge})
    assert options.challenge == challenge


def test_short_challenge_is_rejected(builder):
    with pytest.raises(ValueError):
        builder.build_create_options({"challenge": b"too short"})


def test_challenge_is_never_reused(builder):
    first = builder.build_create_options().challenge
    second = builder.build_create_options().challenge
    third = builder.build_get_options().challenge
    assert len({first, second, third}) == 3


def test_user_resolution(builder):
    options = builder.build_create_options(
        {"user": {"name": "alice"}},
        {"user": {"id": b"default-user", "name": "bob", "displayName": "Bob"}},
    )
    assert options.user.id == b"default-user"
    assert options.user.name == "alice"
    assert options.user.display_name == "Bob"


def test_user_id_longer_than_64_bytes_is_rejected(builder):
    with pytest.raises(ValueError):
        builder.build_create_options({"user": {"id": b"x" * 65}})


def test_caller_algorithms_and_attestation(builder):
    options = builder.build_create_options(
        {"pubKeyCredParams": [{"type": "public-key", "alg": -8}], "attestation": "direct"},
        {"attestation": "indirect"},
    )
    assert [p.alg for p in options.pub_key_cred_params] == [-8]
    assert options.attestation == AttestationConveyancePreference.DIRECT


def test_unknown_attestation_falls_through(builder):
    options = builder.build_create_options({"attestation": "bogus"}, {"attestation": "indirect"})
    assert options.attestation == AttestationConveyancePreference.INDIRECT


def test_unknown_user_verification_falls_back_and_serializes(builder):
    options = builder.build_get_options({"userVerification": "sometimes"})
    assert options.user_verification == UserVerificationRequirement.PREFERRED
    assert options.to_json()["userVerification"] == "preferred"

    options = builder.build_get_options(
        {"userVerification": "sometimes"}, {"userVerification": "required"}
    )
    assert options.to_dict()["userVerification"] == "required"


def test_unknown_selection_values_are_left_out(builder):
    options = builder.build_create_options(
        {"authenticatorSelection": {"userVerification": "sometimes", "authenticatorAttachment": "platform"}}
    )
    assert options.to_json()["authenticatorSelection"] == {"authenticatorAttachment": "platform"}


def test_authenticator_selection_is_merged(builder):
    options = builder.build_create_options(
        {"authenticatorSelection": {"userVerification": "required"}},
        {"authenticatorSelection": {"authenticatorAttachment": "platform", "userVerification": "preferred"}},
    )
    selection = options.authenticator_selection
    assert selection.authenticator_attachment == AuthenticatorAttachment.PLATFORM
    assert selection.user_verification == UserVerificationRequirement.REQUIRED


def test_authenticator_selection_serializes_only_supplied_members(builder):
    options = builder.build_create_options({"authenticatorSelection": {"userVerification": "required"}})
    assert options.to_dict()["authenticatorSelection"] == {"userVerification": "required"}

    options = builder.build_create_options(
        {"authenticatorSelection": {"residentKey": "required", "requireResidentKey": True}}
    )
    assert options.to_json()["authenticatorSelection"] == {
        "residentKey": "required",
        "requireResidentKey": True,
    }


def test_exclude_credentials_union_with_caller_precedence(builder):
    shared = b"credential-one"
    options = builder.build_create_options(
        {"excludeCredentials": [{"id": from_buffer(shared), "transports": ["internal"]}]},
        {
            "excludeCredentials": [
                {"id": shared, "transports": ["usb"]},
                {"id": b"credential-two", "type": "public-key"},
            ]
        },
    )
    ids = [d.id for d in options.exclude_credentials]
    assert ids == [shared, b"credential-two"]
    assert [t.value for t in options.exclude_credentials[0].transports] == ["internal"]
    assert all(isinstance(d.id, bytes) for d in options.exclude_credentials)


def test_merge_descriptors_drops_undecodable_and_unknown_transports():
    merged = merge_descriptors([{"id": ""}, {"id": b"abc", "transports": ["nfc", "carrier-pigeon"]}], None)
    assert len(merged) == 1
    assert [t.value for t in merged[0].transports] == ["nfc"]
    assert merge_descriptors(None, None) is None


def test_extensions_union_with_caller_precedence(builder):
    options = builder.build_create_options(
        {"extensions": {"credProps": True, "prf": {"eval": {"first": b"1"}}}},
        {"extensions": {"credProps": False, "minPinLength": True}},
    )
    assert options.extensions == {
        "credProps": True,
        "minPinLength": True,
        "prf": {"eval": {"first": b"1"}},
    }


def test_hints_and_attestation_formats(builder):
    options = builder.build_create_options(
        {"hints": ["client-device", "unknown-hint"], "attestationFormats": ["packed"]}
    )
    assert options.hints == ["client-device"]
    assert options.attestation_formats == ["packed"]


def test_create_to_dict_mirrors_webauthn_fields(builder):
    options = builder.build_create_options(
        {"user": {"id": b"user-1", "name": "alice", "displayName": "Alice"}},
        {**SITE_DEFAULTS, "excludeCredentials": [b"cred"]},
    )
    as_dict = options.to_dict()
    assert set(as_dict) == {
        "challenge",
        "rp",
        "user",
        "pubKeyCredParams",
        "timeout",
        "attestation",
        "excludeCredentials",
    }
    assert as_dict["user"] == {"id": b"user-1", "name": "alice", "displayName": "Alice"}
    assert as_dict["pubKeyCredParams"][0] == {"type": "public-key", "alg": -7}
    assert as_dict["excludeCredentials"] == [{"type": "public-key", "id": b"cred"}]
    assert isinstance(as_dict["challenge"], bytes)

    as_json = options.to_json()
    assert as_json["user"]["id"] == from_buffer(b"user-1")
    assert as_json["challenge"] == from_buffer(options.challenge)


def test_get_built_in_fallbacks(builder):
    options = builder.build_get_options()
    assert isinstance(options, GetCeremonyOptions)
    assert options.rp_id == "login.example.com"
    assert options.timeout == DEFAULT_TIMEOUT_MS
    assert options.user_verification == UserVerificationRequirement.PREFERRED
    assert options.allow_credentials is None
    assert len(options.challenge) == 32


def test_get_resolution_and_allow_list_union(builder):
    options = builder.build_get_options(
        {"userVerification": "required", "allowCredentials": [{"id": b"a" * 16}]},
        {"rpId": "example.com", "allowCredentials": [{"id": b"b" * 16}, {"id": b"a" * 16}]},
    )
    assert options.rp_id == "example.com"
    assert options.user_verification == UserVerificationRequirement.REQUIRED
    assert [d.id for d in options.allow_credentials] == [b"a" * 16, b"b" * 16]

    as_dict = options.to_dict()
    assert as_dict["rpId"] == "example.com"
    assert as_dict["userVerification"] == "required"
    assert as_dict["allowCredentials"][1] == {"type": "public-key", "id": b"b" * 16}
