from __future__ import annotations

from urllib.parse import quote

import pytest

from tests.helpers import FakeGenerator, candidate, headless_config, inject_dynamic_id_change, managed_runtime

LOGIN_PAGE = """
<html>
  <head><title>Login</title></head>
  <body>
    <form onsubmit="return false;">
      <input id="email" name="email">
      <button id="login-button" data-testid="login-submit" onclick="document.title = 'Signed in';">Sign in</button>
    </form>
  </body>
</html>
"""


@pytest.mark.integration
@pytest.mark.asyncio
async def test_dynamic_id_recovery(tmp_path):
    generator = FakeGenerator(
        candidates=[
            candidate("button", 0.95, reasoning="only button on the page"),
            candidate("[data-testid='login-submit']", 0.9, "attribute", reasoning="test id"),
        ]
    )

    async with managed_runtime(headless_config(tmp_path), generator) as runtime:
        runtime.page.driver.get("data:text/html;charset=utf-8," + quote(LOGIN_PAGE))
        await runtime.actions.fill("#email", "user@example.com")
        inject_dynamic_id_change(runtime)

        await runtime.actions.click("#login-button")

        assert runtime.page.driver.title == "Signed in"
        assert runtime.finder.selector_overrides == {"#login-button": "button"}
        assert runtime.repository.healing_stats().successful_heals == 1
        assert len(generator.calls) == 1
