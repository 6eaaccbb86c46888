from main import _parse_args


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_create_user_subcommand() -> None:
    args = _parse_args(["create-user", "editor", "--admin"])
    assert args.command == "create-user"
    assert args.username == "editor"
    assert args.admin is True


def test_list_users_subcommand() -> None:
    args = _parse_args(["list-users"])
    assert args.command == "list-users"
