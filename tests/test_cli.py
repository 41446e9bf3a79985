"""Tests for the command line."""

import json

import pytest

from channelsync.cli import build_parser, run_command


async def _run(argv: list[str], session_factory) -> int:
    return await run_command(build_parser().parse_args(argv), session_factory)


def test_parser_collects_repeated_options() -> None:
    args = build_parser().parse_args(
        ["inherit", "--product-id", "P1", "--product-id", "P2", "--attribute", "material", "--force"]
    )
    assert args.product_id == ["P1", "P2"]
    assert args.attribute == ["material"]
    assert args.force
    assert not args.dry_run


def test_parser_rejects_unknown_report_format() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["validate", "--report", "xml"])


async def test_discover_with_builtin_adapter(session, session_factory, seed, capsys) -> None:
    account = await seed.account("shopify")
    await session.commit()

    exit_code = await _run(["discover", "--account-id", account.id], session_factory)

    assert exit_code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["successful"] == 1
    assert data["total_fields"] > 0


async def test_inherit_unknown_product_exits_with_error(session_factory, capsys) -> None:
    exit_code = await _run(["inherit", "--product-id", "nope"], session_factory)

    assert exit_code == 1
    assert "Error: Invalid product IDs: nope" in capsys.readouterr().err.splitlines()


async def test_inherit(session, session_factory, seed, capsys) -> None:
    product, _ = await seed.product()
    material = await seed.definition("material")
    await seed.assign(product, material, "Cotton")
    await session.commit()

    exit_code = await _run(["inherit", "--product-id", product.id], session_factory)

    assert exit_code == 0
    assert json.loads(capsys.readouterr().out)["inherited"] == 2


async def test_validate_writes_report(session, session_factory, seed, capsys, tmp_path) -> None:
    """A critical issue gives exit code 1 even after it is fixed."""
    _, (variant, _) = await seed.product()
    material = await seed.definition("material")
    await seed.assign(variant, material, "x", is_inherited=True, inherited_from_id="gone")
    await session.commit()
    output = tmp_path / "report.json"

    exit_code = await _run(
        ["validate", "--check", "orphaned_inheritance", "--fix", "--report", "json", "--output-file", str(output)],
        session_factory,
    )

    assert exit_code == 1
    printed = json.loads(capsys.readouterr().out)
    assert printed["fixed"] == 1
    assert json.loads(output.read_text())["total_issues"] == 1


async def test_validate_invalid_check(session_factory, capsys) -> None:
    exit_code = await _run(["validate", "--check", "bogus"], session_factory)

    assert exit_code == 1
    assert "Invalid checks: bogus" in capsys.readouterr().err


async def test_migrate_links_dry_run(session, session_factory, seed, capsys) -> None:
    account = await seed.account()
    product, _ = await seed.product()
    await seed.legacy_link(account.id, product.id, "EXT-1")
    await session.commit()

    exit_code = await _run(["migrate-links", "--dry-run"], session_factory)

    assert exit_code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["migrated"] == 1
    assert data["dry_run"] is True


async def test_health_unknown_account(session_factory, capsys) -> None:
    exit_code = await _run(["health", "--account-id", "missing"], session_factory)

    assert exit_code == 1
    assert "Error: Channel account missing not found" in capsys.readouterr().err
