from zone_viewer.main import build_parser


def test_defaults():
    args = build_parser().parse_args([])
    assert args.symbol == "BTCUSDT"
    assert args.depth == 20
    assert args.demo is False
    assert args.max_reconnects == 5
    assert args.stale_after == 10.0
    assert args.log_level == "WARNING"


def test_flags():
    args = build_parser().parse_args(
        ["ethusdt", "--depth", "50", "--demo", "--seed", "7", "--max-reconnects", "2", "--stale-after", "3.5"]
    )
    assert args.symbol == "ethusdt"
    assert args.depth == 50
    assert args.demo is True
    assert args.seed == 7
    assert args.max_reconnects == 2
    assert args.stale_after == 3.5
