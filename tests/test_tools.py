"""
Built-in tools and the safe arithmetic evaluator.
"""

import pytest

from ritual_gateway.llm.tools import (
    ToolCatalog,
    ToolSpec,
    calculate,
    default_tool_catalog,
    get_weather,
    safe_calculate,
    search_files,
)


class TestSafeCalculate:
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("2 + 2", 4),
            ("15 * 0.18", 2.7),
            ("(1 + 2) * 3", 9),
            ("-4 + 10 / 4", -1.5),
            ("2 ** 10", 1024),
            ("17 % 5", 2),
        ],
    )
    def test_arithmetic(self, expression, expected):
        assert safe_calculate(expression) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os').system('ls')",
            "open('/etc/passwd')",
            "x + 1",
            "2 ** 1000",
            "1 / 0",
            "True + 1",
            "(10.0**99)**99",
            "((9**99)**99)**99",
            "(((9**99)**99)**99)**9",
            "9**99 * 9**99 * 9**99 * 9**99",
            "1e308 * 10",
            "(-8) ** 0.5",
            "[1, 2]",
            "1 +",
        ],
    )
    def test_rejects_non_arithmetic(self, expression):
        with pytest.raises(ValueError):
            safe_calculate(expression)

    def test_large_but_bounded_result(self):
        assert safe_calculate("(2**50)**4") == 2**200
        assert safe_calculate("0.5 ** -10") == pytest.approx(1024)

    def test_rejects_long_input(self):
        with pytest.raises(ValueError):
            safe_calculate("1+" * 200 + "1")


class TestBuiltinTools:
    @pytest.mark.asyncio
    async def test_calculate_formats_integers(self):
        assert await calculate("6 * 7") == "6 * 7 = 42"

    @pytest.mark.asyncio
    async def test_calculate_reports_invalid_input(self):
        assert (await calculate("drop tables")).startswith("Invalid mathematical expression")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expression", ["(10.0**99)**99", "((9**99)**99)**99"])
    async def test_calculate_reports_oversized_results(self, expression):
        reply = await calculate(expression)
        assert reply.startswith("Invalid mathematical expression")

    @pytest.mark.asyncio
    async def test_weather_known_and_unknown(self):
        assert await get_weather("London") == "London: Cloudy, 61°F"
        assert "not available" in await get_weather("Atlantis")

    @pytest.mark.asyncio
    async def test_search_files(self):
        assert "budget_2024.xlsx" in await search_files("budget")
        assert (await search_files("zzz")).startswith("No files found")


class TestCatalog:
    def test_default_catalog(self):
        catalog = default_tool_catalog()
        assert catalog.names() == ["get_weather", "calculate", "search_files"]
        assert "calculate" in catalog
        assert catalog.get("calculate").describe()["parameters"]["required"] == ["expression"]

    def test_duplicate_tool_rejected(self):
        async def noop() -> str:
            return ""

        spec = ToolSpec(name="noop", description="", parameters={}, handler=noop)
        catalog = ToolCatalog([spec])
        with pytest.raises(ValueError):
            catalog.add(spec)

    @pytest.mark.asyncio
    async def test_execute(self):
        catalog = default_tool_catalog()
        assert await catalog.execute("calculate", {"expression": "1+1"}) == "1+1 = 2"
