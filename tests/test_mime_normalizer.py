"""Tests for MIME repair and RFC 822 normalization."""

from datetime import datetime, timezone

import pytest

from fakes import BASE_TIME, build_eml, build_raw
from mailtimeline.application.ports.email_source import RawMessage
from mailtimeline.domain.entities.email_message import Direction
from mailtimeline.domain.errors import ParseFailure
from mailtimeline.infrastructure.email.mapper import (
    decode_header_value,
    parse_message_ids,
    rfc822_to_normalized_message,
    thread_hint_from_headers,
)
from mailtimeline.infrastructure.email.mime import decode_charset, parse_message
from mailtimeline.infrastructure.email.repair import close_open_boundaries, repair_transfer_encoding

OWN = frozenset({"me@mycrm.com"})

UNTERMINATED = b"""From: Bob <bob@acme.no>
To: me@mycrm.com
Subject: Report
Date: Mon, 01 Jan 2024 10:00:00 +0000
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="XYZ"

--XYZ
Content-Type: text/plain; charset=utf-8

Body text here.
--XYZ
Content-Type: application/pdf; name="r.pdf"
Content-Disposition: attachment; filename="r.pdf"
Content-Transfer-Encoding: base64

JVBERi0xLjQK
"""

NESTED = b"""From: Bob <bob@acme.no>
To: me@mycrm.com
Subject: Nested
Date: Mon, 01 Jan 2024 10:00:00 +0000
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="OUTER"

--OUTER
Content-Type: text/plain; charset=utf-8

Top level text
--OUTER
Content-Type: multipart/alternative; boundary="INNER"

--INNER
Content-Type: text/plain; charset=utf-8

Nested text
--INNER--
--OUTER--
"""

SIGNED = b"""From: Bob <bob@acme.no>
To: me@mycrm.com
Subject: Signed
Date: Mon, 01 Jan 2024 10:00:00 +0000
MIME-Version: 1.0
Content-Type: multipart/signed; protocol="application/pgp-signature"; micalg=pgp-sha256; boundary="S"

--S
Content-Type: text/plain; charset=utf-8

Signed body.
--S
Content-Type: application/pgp-signature; name="signature.asc"

-----BEGIN PGP SIGNATURE-----
abc
-----END PGP SIGNATURE-----
--S--
"""


def normalize(data: bytes, external_id: str = "1", **kwargs):
    message, _, _ = rfc822_to_normalized_message(build_raw(external_id, data), own_addresses=OWN, **kwargs)
    return message


class TestHeaders:
    def test_plain_message_fields(self):
        message = normalize(build_eml(subject="Offer", body="Hello there.\n", message_id="a@acme.no"))

        assert message.subject == "Offer"
        assert message.from_address.email == "bob@acme.no"
        assert message.from_address.name == "Bob Buyer"
        assert [a.email for a in message.to] == ["me@mycrm.com"]
        assert message.sent_at == BASE_TIME
        assert message.text_body == "Hello there."
        assert message.headers.message_id == "a@acme.no"
        assert message.direction == Direction.INBOUND
        assert message.degraded is False

    def test_encoded_word_subject(self):
        message = normalize(build_eml(subject="=?utf-8?q?M=C3=B8te_i_morgen?="))
        assert message.subject == "Møte i morgen"

    def test_addresses_are_lower_cased(self):
        message = normalize(build_eml(sender="Kari <Kari.Nordmann@ACME.no>"))
        assert message.from_address.email == "kari.nordmann@acme.no"

    def test_outbound_when_sender_is_own_address(self):
        message = normalize(build_eml(sender="Me <me@mycrm.com>", to="bob@acme.no"))
        assert message.direction == Direction.OUTBOUND

    def test_reply_headers(self):
        message = normalize(build_eml(in_reply_to="a@x", references="<r1@x> <a@x>"))

        assert message.headers.in_reply_to == "a@x"
        assert message.headers.references == ("r1@x", "a@x")
        assert message.headers.parent_ids() == ["a@x", "r1@x"]

    def test_missing_date_falls_back_to_received_at(self):
        received = datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)
        raw = RawMessage(account_id="acct", external_id="1", rfc822_bytes=build_eml(sent_at=None), received_at=received)

        message, _, _ = rfc822_to_normalized_message(raw, own_addresses=OWN)

        assert message.sent_at == received

    def test_naive_received_at_is_taken_as_utc(self):
        raw = RawMessage(account_id="acct", external_id="1", rfc822_bytes=build_eml(sent_at=None),
                         received_at=datetime(2024, 3, 5, 8, 30))

        message, _, _ = rfc822_to_normalized_message(raw, own_addresses=OWN)

        assert message.sent_at == datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)
        assert message.received_at.tzinfo is timezone.utc

    def test_importance_from_x_priority(self):
        message = normalize(build_eml(headers=("X-Priority: 1 (Highest)",)))
        assert message.headers.importance == "high"

    def test_parse_message_ids_without_brackets(self):
        assert parse_message_ids("abc@x def@y") == ("abc@x", "def@y")
        assert parse_message_ids(None) == ()

    def test_decode_header_value_collapses_whitespace(self):
        assert decode_header_value("  Quarterly\n   numbers ") == "Quarterly numbers"

    def test_gmail_thread_hint(self):
        em, _ = parse_message(build_eml(headers=("X-GM-THRID: 1790000000000000001",)))
        assert thread_hint_from_headers(em) == "gm:1790000000000000001"


class TestBodies:
    def test_missing_content_type_defaults_to_utf8_text(self):
        message = normalize(build_eml(body="Hei på deg", content_type=None))
        assert message.text_body == "Hei på deg"

    def test_eight_bit_utf8_body(self):
        data = build_eml(body="Hei på deg, takk for møtet.", headers=("Content-Transfer-Encoding: 8bit",))

        message = normalize(data)

        assert message.text_body == "Hei på deg, takk for møtet."
        assert message.degraded is False

    def test_eight_bit_latin1_body(self):
        data = build_eml(body="@BODY@", content_type="text/plain; charset=iso-8859-1").replace(
            b"@BODY@", "Blåbær og rømme".encode("latin-1")
        )

        assert normalize(data).text_body == "Blåbær og rømme"

    def test_html_only_body_derives_text(self):
        message = normalize(build_eml(body="<p>Hello <b>Bob</b></p>", content_type="text/html; charset=utf-8"))

        assert message.markup_body == "<p>Hello <b>Bob</b></p>"
        assert "Hello" in message.text_body
        assert "Bob" in message.text_body
        assert "<b>" not in message.text_body

    def test_base64_declaration_on_quoted_printable_payload(self):
        data = build_eml(
            body="Hello, =C3=A6 world!",
            headers=("Content-Transfer-Encoding: base64",),
        )
        message = normalize(data)

        assert message.text_body == "Hello, æ world!"
        assert message.degraded is False

    def test_unterminated_multipart_still_normalizes(self):
        message, tree, selection = rfc822_to_normalized_message(build_raw("1", UNTERMINATED), own_addresses=OWN)

        assert message.text_body == "Body text here."
        assert [n.media_type for n in tree.leaves()] == ["text/plain", "application/pdf"]
        assert selection.markup_index is None

    def test_nesting_beyond_limit_is_degraded(self):
        message = normalize(NESTED, max_depth=1)

        assert message.degraded is True
        assert message.text_body == "Top level text"

    def test_nesting_within_limit_is_clean(self):
        message = normalize(NESTED)

        assert message.degraded is False
        assert message.text_body == "Top level text"

    def test_signed_message_is_flagged(self):
        message = normalize(SIGNED)

        assert message.headers.is_signed is True
        assert message.headers.is_encrypted is False
        assert message.text_body == "Signed body."


class TestParseFailure:
    def test_empty_message(self):
        with pytest.raises(ParseFailure) as exc:
            normalize(b"", external_id="bad")
        assert exc.value.error_code == "PARSE_FAILURE"
        assert exc.value.external_id == "bad"

    def test_body_without_header_section(self):
        with pytest.raises(ParseFailure):
            normalize(b"just some text without headers\nand more text\n")

    def test_mbox_envelope_is_stripped(self):
        data = b"From bob@acme.no Mon Jan  1 10:00:00 2024\n" + build_eml(subject="Envelope")
        assert normalize(data).subject == "Envelope"


class TestRepair:
    def test_close_open_boundaries_appends_terminator(self):
        repaired = close_open_boundaries(UNTERMINATED)
        assert repaired.rstrip().endswith(b"--XYZ--")

    def test_closed_message_is_untouched(self):
        assert close_open_boundaries(NESTED) == NESTED

    def test_transfer_encoding_downgrade(self):
        assert repair_transfer_encoding("base64", b"SGVsbG8=") == "base64"
        assert repair_transfer_encoding("base64", b"Hello, =C3=A6!") == "quoted-printable"
        assert repair_transfer_encoding("base64", b"Hello, world!") == "7bit"

    def test_unknown_charset_is_sniffed(self):
        assert decode_charset("blåbær".encode("utf-8"), "x-unknown") == "blåbær"
        assert decode_charset("blåbær".encode("cp1252"), None) == "blåbær"
