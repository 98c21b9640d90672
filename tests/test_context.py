from __future__ import annotations

from pathlib import Path

import click
import pytest

from toolkeeper.config import ToolKeeperConfig
from toolkeeper.context import ToolKeeperContext, pass_context


@pytest.mark.unit
class TestToolKeeperContext:
    """Tests for ToolKeeperContext class."""

    def test_default_initialization(self) -> None:
        ctx = ToolKeeperContext()

        assert ctx.config_path is None
        assert ctx.verbose == 0
        assert ctx.color is True
        assert isinstance(ctx.config, ToolKeeperConfig)

    def test_instances_are_independent(self) -> None:
        ctx1 = ToolKeeperContext()
        ctx2 = ToolKeeperContext()

        ctx1.verbose = 2
        ctx1.config.cache_ttl = 1

        assert ctx2.verbose == 0
        assert ctx2.config.cache_ttl != 1

    def test_all_attributes_can_be_set(self) -> None:
        ctx = ToolKeeperContext()
        config = ToolKeeperConfig(refresh_tools=False)

        ctx.config_path = Path("/path/to/toolkeeper.toml")
        ctx.verbose = 2
        ctx.color = False
        ctx.config = config

        assert ctx.config_path == Path("/path/to/toolkeeper.toml")
        assert ctx.verbose == 2
        assert ctx.color is False
        assert ctx.config is config

    def test_slots_prevents_arbitrary_attributes(self) -> None:
        ctx = ToolKeeperContext()

        with pytest.raises(AttributeError):
            ctx.arbitrary_attribute = "value"  # type: ignore


@pytest.mark.unit
class TestPassContextDecorator:
    """Tests for pass_context decorator."""

    def test_injects_existing_context(self) -> None:
        @click.command()
        @pass_context
        def current(ctx: ToolKeeperContext) -> ToolKeeperContext:
            return ctx

        click_ctx = click.Context(click.Command("test"))
        toolkeeper_ctx = ToolKeeperContext()
        click_ctx.obj = toolkeeper_ctx

        assert click_ctx.invoke(current) is toolkeeper_ctx

    def test_creates_context_when_missing(self) -> None:
        @click.command()
        @pass_context
        def current(ctx: ToolKeeperContext) -> ToolKeeperContext:
            return ctx

        click_ctx = click.Context(click.Command("test"))

        result = click_ctx.invoke(current)

        assert isinstance(result, ToolKeeperContext)
        assert result.verbose == 0
