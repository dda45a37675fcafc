"""
Target screen — edit, test and save the HTTP target.
The target is edited as YAML (same shape as the files `customgpt console
--target` loads). Save only unlocks after a successful test of the exact
text being saved.
"""
from __future__ import annotations
import json
import yaml
from rich.markup import escape
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.widgets import Button, Static, TextArea
from customgpt.errors import ConsoleError
from customgpt.session import TargetTestResult
from customgpt.target import TargetConfig
from customgpt.tui.screens.base import ConsolePane
TEMPLATE = """\
name: default
method: POST
url: http://localhost:8080/v1/completions
headers:
  - {key: Content-Type, value: application/json}
query_params: []
body_template: '{"prompt": "{{prompt}}", "max_tokens": 128}'
model_type: completions        # completions | chat
output_type: json              # json | text | arrayBuffer
response_expression: response.choices[0].text
"""
def target_yaml(config: TargetConfig | None) -> str:
    """YAML text for the editor."""
    if config is None:
        return TEMPLATE
    return yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True)
def parse_target(text: str) -> TargetConfig:
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("expected a mapping at the top level")
    return TargetConfig.from_dict(data)
def result_markup(result: TargetTestResult) -> str:
    if result.error:
        return f"[bold red]✗ {escape(result.error)}[/bold red]"
    style = "bold green" if result.ok else "bold red"
    mark = "✓" if result.ok else "✗"
    lines = [
        f"[{style}]{mark} Response: {result.status} {escape(result.status_text)}[/{style}]",
        "",
        "[bold green]── Extracted value ──[/bold green]",
        escape(result.display()),
    ]
    if result.envelope is not None:
        lines += [
            "",
            "[bold green]── Full envelope ──[/bold green]",
            escape(json.dumps(result.envelope.to_dict(), indent=2, ensure_ascii=False)),
        ]
    if result.ok:
        lines += ["", "[dim]Press Save to use this target for the chat.[/dim]"]
    return "\n".join(lines)
class TargetScreen(ConsolePane):
    """YAML target editor with Test / Save."""
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._tested_text: str | None = None
    def compose(self) -> ComposeResult:
        with Horizontal():
            with Vertical(id="target-editor"):
                yield Static(self.section("Configure HTTP target"), markup=True)
                yield TextArea(target_yaml(self.app.initial_target), id="target-yaml")
                with Horizontal(id="target-buttons"):
                    yield Button("Test configuration", id="target-test", variant="primary")
                    yield Button("Save", id="target-save", variant="success", disabled=True)
            with VerticalScroll(id="target-result-scroll"):
                yield Static("[dim]Test the configuration to see the response.[/dim]",
                             id="target-result", markup=True)
    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        self.query_one("#target-save", Button).disabled = event.text_area.text != self._tested_text
    def on_button_pressed(self, event: Button.Pressed) -> None:
        text = self.query_one("#target-yaml", TextArea).text
        if event.button.id == "target-test":
            self.run_worker(self._test(text), exclusive=True, group="target")
        elif event.button.id == "target-save":
            self.run_worker(self._save(text), exclusive=True, group="target")
    def _show(self, markup: str) -> None:
        self.query_one("#target-result", Static).update(markup)
    async def _test(self, text: str) -> None:
        try:
            config = parse_target(text)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            self._show(f"[bold red]✗ Invalid target YAML: {escape(str(e))}[/bold red]")
            return
        except ConsoleError as e:
            self._show(f"[bold red]✗ {escape(e.message)}[/bold red]")
            return
        self._show("[dim italic]Testing…[/dim italic]")
        result = await self.controller.test_target(config)
        self._tested_text = text if result.ok else None
        self.query_one("#target-save", Button).disabled = not result.ok
        self._show(result_markup(result))
    async def _save(self, text: str) -> None:
        try:
            config = await self.controller.save_target(parse_target(text))
        except (yaml.YAMLError, ValueError, TypeError) as e:
            self._show(f"[bold red]✗ Invalid target YAML: {escape(str(e))}[/bold red]")
            return
        except ConsoleError as e:
            self.app.notify(e.message, severity="warning")
            return
        self.app.notify(f"Target '{config.name}' saved")
        self.app.action_switch_tab("chat")
