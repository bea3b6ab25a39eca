"""Tests for postal address parsing."""

from returnpilot.domain.address import PostalAddress, parse_address_string


class TestParseAddressString:
    """Splitting rules of the fallback address parser."""

    def test_full_address(self) -> None:
        address = parse_address_string(
            "12 MG Road, Indiranagar, Bengaluru, Karnataka, 560038, India"
        )

        assert address == PostalAddress(
            line1="12 MG Road, Indiranagar",
            city="Bengaluru",
            state="Karnataka",
            pincode="560038",
            country="India",
        )

    def test_without_country(self) -> None:
        address = parse_address_string("Flat 4, Baner, Pune, Maharashtra, 411045")

        assert address.line1 == "Flat 4, Baner"
        assert address.city == "Pune"
        assert address.state == "Maharashtra"
        assert address.pincode == "411045"

    def test_street_and_city_only(self) -> None:
        address = parse_address_string("Flat 4, Pune, 411001")

        assert address.line1 == "Flat 4"
        assert address.city == "Pune"
        assert address.state == ""
        assert address.pincode == "411001"

    def test_non_pincode_trailing_token_is_not_a_pincode(self) -> None:
        address = parse_address_string("House 9, Sector 5, Noida, Uttar Pradesh")

        assert address.pincode == ""
        assert address.state == "Uttar Pradesh"
        assert address.city == "Noida"

    def test_single_token_is_street_only(self) -> None:
        address = parse_address_string("Near the old temple")

        assert address == PostalAddress(line1="Near the old temple")

    def test_empty_input(self) -> None:
        assert parse_address_string(None) is None
        assert parse_address_string("  ") is None

    def test_blank_tokens_are_ignored(self) -> None:
        address = parse_address_string("12 MG Road, , Bengaluru, Karnataka, 560038")

        assert address.line1 == "12 MG Road"
        assert address.city == "Bengaluru"


class TestPostalAddress:
    """Tests for PostalAddress value object."""

    def test_format_skips_empty_parts(self) -> None:
        address = PostalAddress(line1="12 MG Road", city="Bengaluru", pincode="560038")

        assert address.format() == "12 MG Road, Bengaluru, 560038, India"

    def test_dict_round_trip(self) -> None:
        address = PostalAddress(
            line1="12 MG Road", line2="Floor 2", city="Bengaluru", state="KA", pincode="560038"
        )

        assert PostalAddress.from_dict(address.to_dict()) == address

    def test_from_dict_without_street(self) -> None:
        assert PostalAddress.from_dict({"city": "Pune"}) is None
        assert PostalAddress.from_dict(None) is None
