from unittest.mock import patch

from proxy.__main__ import build_settings, main, parse_args


def test_command_line_overrides_settings():
    args = parse_args(["--port", "8080", "--default-host", "node.test", "--cache-ttl", "15",
                       "--max-deviance", "3", "--local-store-url", "sqlite://"])
    settings = build_settings(args)

    assert settings.bind_port == 8080
    assert settings.default_host == "node.test"
    assert settings.cache_ttl == 15
    assert settings.max_deviance == 3
    assert settings.local_store_url == "sqlite://"


def test_unset_options_keep_defaults():
    settings = build_settings(parse_args([]))

    assert settings.default_port == 11898
    assert settings.timeout == 5.0


@patch("proxy.__main__.uvicorn.run")
@patch("proxy.__main__.configure_logging")
def test_main_runs_the_app(configure_logging, run):
    main(["--host", "127.0.0.1", "--port", "9000", "--log-level", "DEBUG"])

    configure_logging.assert_called_once()
    assert configure_logging.call_args.args[0] == "DEBUG"
    assert run.call_args.kwargs["host"] == "127.0.0.1"
    assert run.call_args.kwargs["port"] == 9000
