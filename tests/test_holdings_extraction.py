"""Tests for the generic ISIN / quantity / price extractor."""

from asset_parser import MANUAL_CONFIDENCE, OCR_CONFIDENCE, extract_holdings_fields


class TestExtractHoldingsFields:
    def test_share_quantities(self):
        result = extract_holdings_fields("AAPL 100 shares\nGOOGL 50 shares")
        assert result.quantities == [100.0, 50.0]
        assert result.isins == []
        assert result.prices == []

    def test_isins_deduplicated_in_order(self):
        text = "US0378331005 Apple\nUS5949181045 Microsoft\nUS0378331005 again"
        result = extract_holdings_fields(text)
        assert result.isins == ["US0378331005", "US5949181045"]

    def test_currency_prefixed_prices_only(self):
        result = extract_holdings_fields("10 units at $150.25, fee EUR 2.5, ref 4471")
        assert result.prices == [150.25, 2.5]
        assert result.quantities == [10.0]

    def test_quantity_units(self):
        result = extract_holdings_fields("3 pcs, 4 pieces, 1 share, 2.5 Units")
        assert result.quantities == [3.0, 4.0, 1.0, 2.5]

    def test_confidence_label(self):
        assert extract_holdings_fields("x").confidence == MANUAL_CONFIDENCE
        assert extract_holdings_fields("x", OCR_CONFIDENCE).confidence == 0.8

    def test_to_dict(self):
        result = extract_holdings_fields("DE0005140008 12 shares £9.10")
        assert result.to_dict() == {
            "isins": ["DE0005140008"],
            "quantities": [12.0],
            "prices": [9.1],
            "confidence": 1.0,
            "text": "DE0005140008 12 shares £9.10",
        }

    def test_non_string_input(self):
        result = extract_holdings_fields(None)
        assert result.text == ""
        assert result.isins == [] and result.quantities == [] and result.prices == []
