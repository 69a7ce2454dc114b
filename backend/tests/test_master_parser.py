import pytest

from stockdata.config.settings import DomesticLayout
from stockdata.errors import SchemaDriftError
from stockdata.master.parser import (
    FOREIGN_FIELD_MAPS,
    clean_name,
    get_field_map,
    parse_domestic,
    parse_domestic_line,
    parse_foreign,
)
from stockdata.schemas.master import DomesticSegment, Venue


def domestic_line(code: str, name: str, isin: str = "KR7005930003") -> str:
    # code(6) + filler(3) + ISIN(12) + name region, then vendor trailer columns.
    return f"{code}   {isin}{name.ljust(30)}ST100Y1" + "0" * 60


def foreign_line(symbol: str, local_name: str, name: str, exchange: str = "NAS") -> str:
    return "\t".join(
        ["US", "22", exchange, "나스닥", symbol, f"{exchange}{symbol}", local_name, name, "2", "USD"]
    )


def test_domestic_line_example() -> None:
    record = parse_domestic_line(
        domestic_line("005930", "삼성전자보통주"), DomesticSegment.KOSPI, DomesticLayout()
    )

    assert record is not None
    assert record.symbol == "005930"
    assert record.name == "삼성전자보통주"
    assert record.segment is DomesticSegment.KOSPI


@pytest.mark.parametrize(
    "line",
    [
        "",
        "short line",
        domestic_line("00593A", "삼성전자"),
        domestic_line("12345", "뭔가"),
        domestic_line("000660", ""),
    ],
)
def test_domestic_line_rejected(line: str) -> None:
    assert parse_domestic_line(line, DomesticSegment.KOSDAQ, DomesticLayout()) is None


def test_domestic_batch_tolerates_malformed_line() -> None:
    lines = [domestic_line(f"{index:06d}", f"종목{index}") for index in range(1, 101)]
    lines.insert(50, "###### corrupted row without a numeric code ##########")
    text = "\r\n".join(lines) + "\r\n"

    records = parse_domestic(text, DomesticSegment.KOSPI)

    assert len(records) == 100
    assert records[0].symbol == "000001"
    assert records[-1].name == "종목100"


def test_domestic_layout_is_configurable() -> None:
    layout = DomesticLayout(code_start=2, name_start=23)
    record = parse_domestic_line(
        "XX" + domestic_line("035420", "NAVER"), DomesticSegment.KOSPI, layout
    )

    assert record is not None
    assert record.symbol == "035420"
    assert record.name == "NAVER"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("삼성전자보통주 ST10", "삼성전자보통주"),
        ("삼성전자보통주ST100Y1000", "삼성전자보통주"),
        ("KODEX 200 EF 0000", "KODEX 200"),
        ("KODEX 200 EF", "KODEX 200"),
        ("TIGER 미국S&P500EF", "TIGER 미국S&P500"),
        ("어떤회사 BC 12 34", "어떤회사"),
        ("  LG   에너지솔루션  ", "LG 에너지솔루션"),
        ("ST10", ""),
    ],
)
def test_clean_name(raw: str, expected: str) -> None:
    assert clean_name(raw) == expected


def test_foreign_parse_uses_current_field_map() -> None:
    text = "\n".join(
        [
            foreign_line("AAPL", "애플", "APPLE INC"),
            foreign_line("PLTR", "팔란티어 테크", "PALANTIR  TECHNOLOGIES INC"),
            foreign_line("BRK.B", "버크셔해서웨이B", ""),
        ]
    )

    records = parse_foreign(text, Venue.NASDAQ)

    assert [record.symbol for record in records] == ["AAPL", "PLTR", "BRK.B"]
    assert records[0].name == "APPLE INC"
    assert records[0].local_name == "애플"
    assert records[1].name == "PALANTIR TECHNOLOGIES INC"
    assert records[2].name == "버크셔해서웨이B"
    assert records[2].venue is Venue.NASDAQ


def test_foreign_parse_skips_invalid_symbols_below_threshold() -> None:
    lines = [foreign_line(f"T{index}", f"종목{index}", f"TICKER {index}") for index in range(10)]
    lines.append(foreign_line("lower", "소문자", "LOWER CASE"))
    lines.append("US\t22\tNAS\t짧은줄")

    records = parse_foreign("\n".join(lines), Venue.NYSE)

    assert len(records) == 10


def test_foreign_parse_flags_column_drift() -> None:
    # Vendor dropped a leading column: the symbol column now holds local names.
    lines = [
        "\t".join(
            ["US", "NAS", "나스닥", f"NAST{index}", f"종목{index}", f"TICKER {index}", "2", "USD"]
        )
        for index in range(20)
    ]

    with pytest.raises(SchemaDriftError):
        parse_foreign("\n".join(lines), Venue.NASDAQ)


def test_foreign_parse_flags_short_rows() -> None:
    lines = ["US\t22\tNAS\t나스닥\tAAPL\tNASAAPL" for _ in range(5)]

    with pytest.raises(SchemaDriftError):
        parse_foreign("\n".join(lines), Venue.NASDAQ)


def test_previous_field_map_version_reads_other_columns() -> None:
    records = parse_foreign(foreign_line("AAPL", "애플", "APPLE INC"), Venue.NASDAQ, FOREIGN_FIELD_MAPS["v1"])

    assert records[0].name == "애플"
    assert records[0].local_name == "나스닥"


def test_unknown_field_map_version() -> None:
    with pytest.raises(ValueError):
        get_field_map("v9")


def test_domestic_records_split_only_on_line_feeds() -> None:
    # A group separator in the vendor trailer must not start a new record.
    line = f"005930   KR7005930003{'삼성전자'.ljust(30)}ST100Y1\x1c" + "0" * 60
    text = line + "\r\n"

    records = parse_domestic(text, DomesticSegment.KOSPI)

    assert [record.symbol for record in records] == ["005930"]
    assert records[0].name == "삼성전자"


def test_foreign_records_split_only_on_line_feeds() -> None:
    records = parse_foreign(foreign_line("AAPL", "애플", "APPLE\x1dINC") + "\r\n", Venue.NASDAQ)

    assert len(records) == 1
    assert records[0].name == "APPLE INC"
