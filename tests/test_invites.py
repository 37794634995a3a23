from squad_chat.core.invites import (
    INVITE_ALPHABET,
    INVITE_CODE_LENGTH,
    build_invite_link,
    extract_invite_code,
    generate_invite_code,
    normalize_invite_code,
    parse_invite_input,
    strip_invite,
)


def test_generated_codes_use_unambiguous_lowercase_alphabet():
    for _ in range(200):
        code = generate_invite_code()
        assert len(code) == INVITE_CODE_LENGTH
        assert set(code) <= set(INVITE_ALPHABET)
        assert code == code.lower()
    assert not set("ilo01") & set(INVITE_ALPHABET)


def test_normalize_invite_code():
    assert normalize_invite_code("  AB3DEF \n") == "ab3def"
    assert normalize_invite_code("") == ""
    assert normalize_invite_code(None) == ""


def test_extract_invite_code_is_case_insensitive():
    assert extract_invite_code("https://squad.chat/?invite=A1B2C3") == "a1b2c3"
    assert extract_invite_code("https://squad.chat/?room=x&invite=k7m2qp") == "k7m2qp"
    assert extract_invite_code("https://squad.chat/") is None
    assert extract_invite_code("https://squad.chat/?invite=") is None
    assert extract_invite_code(None) is None


def test_strip_invite_keeps_other_parameters():
    assert strip_invite("https://squad.chat/?invite=a1b2c3") == "https://squad.chat/"
    assert strip_invite("https://squad.chat/?theme=dark&invite=a1b2c3") == "https://squad.chat/?theme=dark"


def test_build_invite_link_replaces_existing_code():
    link = build_invite_link("https://squad.chat/?invite=old123", "NEW456")
    assert link == "https://squad.chat/?invite=new456"
    assert extract_invite_code(link) == "new456"


def test_parse_invite_input_accepts_links_and_codes():
    assert parse_invite_input("https://squad.chat/?invite=K7M2QP") == "k7m2qp"
    assert parse_invite_input(" K7M2QP ") == "k7m2qp"
