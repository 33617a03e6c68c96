import pytest

from config import DEVICE_PROFILES
from models import Mode
from monitoring import (
    ParseFailure, extract_field, has_carrier_aggregation, mode_description,
    normalize_mode, read_aux, read_traffic, select_signal_metrics, strip_unit,
)

HUAWEI = DEVICE_PROFILES["huawei"]
NETGEAR = DEVICE_PROFILES["netgear"]


@pytest.mark.parametrize("raw, expected", [
    ("-90dBm", -90.0),
    ("-11.5dB", -11.5),
    (" 12 dB ", 12.0),
    ("+3", 3.0),
    ("85%", 85.0),
    (-71, -71.0),
    (2.5, 2.5),
])
def test_strip_unit_accepts_numbers_with_known_units(raw, expected) -> None:
    assert strip_unit(raw) == expected


@pytest.mark.parametrize("raw", [
    None, "", "N/A", "dBm", ">=-51dBm", "-90 volts", "1.2.3", True, float("nan"), [1],
    "1" * 400, "-" + "9" * 400 + "dBm", 10 ** 400,
])
def test_strip_unit_rejects_anything_else(raw) -> None:
    with pytest.raises(ParseFailure):
        strip_unit(raw)


def test_normalize_mode_vendor_tags() -> None:
    assert normalize_mode("0", HUAWEI) is Mode.GSM
    assert normalize_mode("2", HUAWEI) is Mode.WCDMA
    assert normalize_mode("7", HUAWEI) is Mode.LTE
    assert normalize_mode(7, HUAWEI) is Mode.LTE
    assert normalize_mode("LteService", NETGEAR) is Mode.LTE
    assert normalize_mode("WcdmaService", NETGEAR) is Mode.WCDMA


def test_normalize_mode_canonical_names_and_unknown() -> None:
    assert normalize_mode("LTE") is Mode.LTE
    assert normalize_mode("wcdma", NETGEAR) is Mode.WCDMA
    assert normalize_mode("NoService", NETGEAR) is Mode.UNKNOWN
    assert normalize_mode(None) is Mode.UNKNOWN
    assert normalize_mode("7") is Mode.UNKNOWN


def test_mode_description() -> None:
    assert mode_description(Mode.LTE) == "LTE"
    assert mode_description(Mode.LTE, carrier_aggregation=True) == "LTE-A"
    assert mode_description(Mode.UNKNOWN, carrier_aggregation=True) == "Unknown mode"


def test_extract_field_walks_nested_maps() -> None:
    raw = {"wwan": {"signalStrength": {"rsrp": -95}}, "flat.key": 1}
    assert extract_field(raw, "wwan.signalStrength.rsrp") == -95
    assert extract_field(raw, "flat.key") == 1
    assert extract_field(raw, "wwan.missing.rsrp") is None
    assert extract_field(None, "wwan") is None


def test_carrier_aggregation_from_secondary_carrier_count() -> None:
    assert has_carrier_aggregation({"wwan": {"ca": {"SCCcount": 2}}}, NETGEAR)
    assert not has_carrier_aggregation({"wwan": {"ca": {"SCCcount": 0}}}, NETGEAR)
    assert not has_carrier_aggregation({}, NETGEAR)
    assert not has_carrier_aggregation({"wwan": {"ca": {"SCCcount": 2}}}, HUAWEI)


def test_select_signal_metrics_only_returns_mode_keys() -> None:
    raw = {"mode": "7", "rssi": "-67dBm", "rsrp": "-92dBm", "rsrq": "N/A",
           "sinr": "9dB", "rscp": "-80dBm"}
    values, failures = select_signal_metrics(raw, Mode.LTE, HUAWEI)
    assert values == {"rssi": -67.0, "rsrp": -92.0, "sinr": 9.0}
    assert failures == ["rsrq"]

    values, _ = select_signal_metrics(raw, Mode.WCDMA, HUAWEI)
    assert "rsrp" not in values
    assert values["rscp"] == -80.0


def test_read_traffic_and_aux() -> None:
    raw = {"wwan": {"dataTransferredRx": 3000, "dataTransferredTx": "1000",
                    "registerNetworkDisplay": "MovilNet"},
           "power": {"battChargeLevel": 87}}
    assert read_traffic(raw, NETGEAR) == (3000.0, 1000.0)
    assert read_aux(raw, NETGEAR) == {"battery": "87", "plmn": "MovilNet"}

    with pytest.raises(ParseFailure):
        read_traffic({"wwan": {}}, NETGEAR)
