import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich.markup import escape
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, Header, Label, LoadingIndicator, Markdown, Tree

from raiz.__version__ import __version__
from raiz.config import Settings
from raiz.core import risk
from raiz.core.aggregator import MemoryCache
from raiz.core.analyzer import Analyzer
from raiz.core.model import AnalysisReport, DependencyNode, ResolutionMode, VulnerabilityFinding
from raiz.core.suppression import SuppressionLog
from raiz.providers.base import summary_fallback


def findings_markdown(findings: List[VulnerabilityFinding], depth_table: Sequence[int] = risk.DEPTH_SCORES) -> str:
    md_output = []

    for finding in findings:
        vuln = finding.vulnerability
        node = finding.dependency_node
        title = vuln.title or summary_fallback(vuln.description)
        status = " _(suppressed)_" if finding.suppressed else ""
        factors = risk.score_breakdown(vuln.severity, node.depth, node.scope, vuln.exploit_maturity, depth_table)

        md_output.append(f"# (X) {vuln.id}{status}\n")
        md_output.append(f"**{title}**\n")
        md_output.append(f"- **Risk**: {finding.risk_score:.2f} / 100")
        md_output.append("- **Risk factors**: " + ", ".join(f"{name} {score}" for name, score in factors.items()))
        md_output.append(f"- **Severity**: {vuln.severity.value}")
        md_output.append(f"- **Confidence**: {finding.confidence_score} ({finding.confidence_level.value})")
        md_output.append(f"- **Exploit maturity**: {vuln.exploit_maturity.value}")
        md_output.append(f"- **Sources**: {', '.join(sorted(s.value for s in vuln.sources))}")
        if vuln.aliases:
            md_output.append(f"- **Aliases**: {', '.join(sorted(vuln.aliases))}")
        if vuln.affected_version_range:
            md_output.append(f"- **Affected**: `{vuln.affected_version_range}`")
        md_output.append(f"- **Finding id**: `{finding.finding_id}`\n")

        if finding.false_positive_indicators:
            md_output.append(f"### Possible false positive ({finding.false_positive_likelihood.value})\n")
            for indicator in finding.false_positive_indicators:
                md_output.append(f"- {indicator}")
            md_output.append("")

        if vuln.description:
            md_output.append(f"{vuln.description}\n")

        if vuln.references:
            md_output.append("### Links\n")
            for url in vuln.references:
                md_output.append(f"- [{url}]({url})")

        md_output.append("\n---\n")

    if not md_output:
        return "No vulnerability data found."

    return "\n".join(md_output)


class FindingsScreen(ModalScreen):
    """Modal with every finding reported for one dependency."""

    DEFAULT_CSS = """
    FindingsScreen {
        align: center middle;
        background: rgba(0, 0, 0, 0.8);
    }
    #dialog {
        padding: 0 1;
        width: 85%;
        height: 85%;
        border: heavy $error;
        background: $surface;
        layout: vertical;
    }
    #title {
        text-align: center;
        text-style: bold;
        background: $error;
        color: white;
        width: 100%;
        padding: 1;
    }
    #content-scroll {
        height: 1fr;
        margin: 1 0;
        overflow-y: auto;
        scrollbar-gutter: stable;
    }
    #close-btn {
        width: 100%;
        dock: bottom;
    }
    """

    def __init__(self, node: DependencyNode, findings: List[VulnerabilityFinding],
                 depth_table: Sequence[int] = risk.DEPTH_SCORES) -> None:
        super().__init__()
        self.node = node
        self.findings = findings
        self.depth_table = depth_table

    def compose(self) -> ComposeResult:
        yield Vertical(
            Label(f"[!] {escape(str(self.node.coordinate))} ({self.node.scope.value}, depth {self.node.depth})",
                  id="title"),
            VerticalScroll(
                Markdown(findings_markdown(self.findings, self.depth_table)),
                id="content-scroll"
            ),
            Button("Close (Esc)", variant="error", id="close-btn"),
            id="dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss()

    def key_escape(self) -> None:
        self.dismiss()


class RaizApp(App):
    TITLE = "Raiz"
    SUB_TITLE = f"v{__version__}"

    DEFAULT_CSS = """
    Screen { layout: vertical; }

    #info-bar {
        height: 3;
        dock: top;
        background: $surface;
        border-bottom: solid $primary;
        align: left middle;
        padding: 0 1;
    }

    .info-label {
        width: auto;
        height: 1;
        padding: 0 2;
        color: $text;
    }

    #tree-container {
        height: 1fr;
        border: none;
        margin: 0 1;
    }
    Tree { padding: 1; background: $surface; }

    #loading-container { height: 100%; align: center middle; }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
        Binding("l", "expand_node", "Expand"),
        Binding("h", "collapse_node", "Collapse"),
        Binding("space", "toggle_node", "Toggle"),
        Binding("enter", "show_details", "Details"),
        Binding("v", "toggle_filter", "Vuln Only"),
        Binding("a", "toggle_audit", "Audit View"),
        Binding("r", "rescan", "Rescan"),
    ]

    show_only_vulnerable: bool = False
    audit_view: bool = False
    resolver_name: str = "..."

    def __init__(self, path: Path, settings: Settings, mode: ResolutionMode = ResolutionMode.SAFE,
                 suppressions: Optional[SuppressionLog] = None) -> None:
        super().__init__()
        self.path = path
        self.settings = settings
        self.mode = mode
        self.suppressions = suppressions or SuppressionLog()
        self.report: Optional[AnalysisReport] = None
        self.cache = MemoryCache()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with Horizontal(id="info-bar"):
            yield Label(f"[b]Resolver:[/b] [cyan]{self.resolver_name}[/]", id="lbl-context", classes="info-label")
            yield Label("[b]Total:[/b] [blue]0[/]", id="lbl-total", classes="info-label")
            yield Label("[b]Vuln:[/b] [red]0[/]", id="lbl-vuln", classes="info-label")
            yield Label("[b]Findings:[/b] [red]0[/]", id="lbl-findings", classes="info-label")
            yield Label("[b]View:[/b] active", id="lbl-view", classes="info-label")

        with Container(id="main-area"):
            with Container(id="loading-container"):
                yield LoadingIndicator()
                yield Label("Initializing Raiz...", id="status-label")

            with Container(id="tree-container"):
                yield Tree("Root", id="dep-tree")

        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#tree-container").display = False
        self.scan_project()

    # --- ACTIONS ---

    def action_cursor_down(self) -> None:
        self.query_one("#dep-tree").action_cursor_down()

    def action_cursor_up(self) -> None:
        self.query_one("#dep-tree").action_cursor_up()

    def action_expand_node(self) -> None:
        tree = self.query_one("#dep-tree")
        if tree.cursor_node:
            tree.cursor_node.expand()

    def action_collapse_node(self) -> None:
        tree = self.query_one("#dep-tree")
        node = tree.cursor_node
        if node:
            if node.is_expanded:
                node.collapse()
            elif node.parent:
                tree.select_node(node.parent)
                node.parent.collapse()

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:
        node = event.node.data
        findings = self.findings_by_node().get(id(node), []) if node is not None else []
        if findings:
            self.push_screen(FindingsScreen(node, findings, self.settings.depth_scores))
        else:
            self.notify("No findings for this dependency.", severity="information")

    def action_toggle_filter(self) -> None:
        self.show_only_vulnerable = not self.show_only_vulnerable

        status = "enabled" if self.show_only_vulnerable else "disabled"
        severity = "warning" if self.show_only_vulnerable else "information"
        msg = "Showing vulnerable dependencies only." if self.show_only_vulnerable else "Showing all dependencies."

        self.notify(f"Filter {status}: {msg}", severity=severity)
        self.render_tree()

    def action_toggle_audit(self) -> None:
        self.audit_view = not self.audit_view
        view = "audit (suppressed included)" if self.audit_view else "active"
        self.notify(f"View: {view}", severity="information")
        self.render_tree()

    def action_rescan(self) -> None:
        """Re-resolve and ask every provider again, bypassing cached answers."""
        self.query_one("#tree-container").display = False
        self.query_one("#loading-container").display = True
        self.query_one("LoadingIndicator").display = True
        self.scan_project(refresh=True)

    # --- LOGIC ---

    def visible_findings(self) -> List[VulnerabilityFinding]:
        if self.report is None:
            return []
        if self.audit_view:
            return self.report.audit_view(self.suppressions)
        return self.report.active_findings(self.suppressions)

    def findings_by_node(self) -> Dict[int, List[VulnerabilityFinding]]:
        grouped: Dict[int, List[VulnerabilityFinding]] = {}
        for finding in self.visible_findings():
            grouped.setdefault(id(finding.dependency_node), []).append(finding)
        return grouped

    def _has_vulnerable_descendant(self, node: DependencyNode, grouped: Dict[int, List]) -> bool:
        if id(node) in grouped:
            return True
        return any(self._has_vulnerable_descendant(c, grouped) for c in self.report.resolution.children_of(node))

    def update_status(self, msg: str) -> None:
        try:
            self.query_one("#status-label").update(msg)
        except Exception:
            logging.debug(f"Status label gone, dropping: {msg}")

    def update_dashboard_ui(self) -> None:
        grouped = self.findings_by_node()
        total = len(self.report.resolution.nodes) if self.report and self.report.resolution else 0
        findings = sum(len(v) for v in grouped.values())
        self.query_one("#lbl-context", Label).update(f"[b]Resolver:[/b] [cyan]{escape(self.resolver_name)}[/]")
        self.query_one("#lbl-total", Label).update(f"[b]Total:[/b] [blue]{total}[/]")
        self.query_one("#lbl-vuln", Label).update(f"[b]Vuln:[/b] [red]{len(grouped)}[/]")
        self.query_one("#lbl-findings", Label).update(f"[b]Findings:[/b] [red]{findings}[/]")
        self.query_one("#lbl-view", Label).update(f"[b]View:[/b] {'audit' if self.audit_view else 'active'}")

    def show_error(self, message: str) -> None:
        self.query_one("#status-label").update(f"[bold red]Fatal Error:[/]\n{escape(message)}")
        self.query_one("LoadingIndicator").display = False

    @work(thread=False, exclusive=True)
    async def scan_project(self, refresh: bool = False) -> None:
        try:
            logging.info("Worker started.")
            self.update_status(f"Resolving dependencies ({self.mode.value} mode)...")

            analyzer = Analyzer.from_settings(self.settings, self.cache)
            self.resolver_name = analyzer.registry.select(self.path).name
            self.update_status(f"Resolving with {self.resolver_name}, then querying vulnerability sources...")

            self.report = await analyzer.analyze(self.path, self.mode, refresh=refresh)
            self.resolver_name = self.report.resolution.resolver_used
            for diagnostic in self.report.diagnostics:
                logging.warning(diagnostic)
            if self.report.diagnostics:
                self.notify(f"{len(self.report.diagnostics)} diagnostics, see the log file.", severity="warning")

            self.update_status("Rendering tree...")
            self.render_tree()

        except Exception as e:
            logging.exception("Fatal error in worker:")
            self.show_error(str(e))

    def render_tree(self) -> None:
        if self.report is None or self.report.resolution is None:
            return
        resolution = self.report.resolution
        grouped = self.findings_by_node()

        tree = self.query_one("#dep-tree")
        tree.clear()
        tree.root.label = f"📂 {escape(str(self.path))}"
        tree.root.expand()

        def add_nodes(tree_node, parent: Optional[DependencyNode]):
            for child in resolution.children_of(parent):
                if self.show_only_vulnerable and not self._has_vulnerable_descendant(child, grouped):
                    continue

                coordinate = child.coordinate
                safe_name = escape(coordinate.key)
                safe_ver = escape(coordinate.version)

                child_count = len(resolution.children_of(child))
                count_suffix = f" [dim]↳[/] {child_count}" if child_count > 0 else ""
                scope_suffix = f" [dim]{child.scope.value}[/]" if child.scope.value != "compile" else ""

                findings = grouped.get(id(child))
                if findings:
                    top = max(f.risk_score for f in findings)
                    label = (f"[bold red](!) {safe_name}[/] [dim]{safe_ver}[/] "
                             f"[red]({len(findings)} findings, risk {top:.0f})[/]{scope_suffix}{count_suffix}")
                elif not coordinate.version:
                    label = f"[blue](-) {safe_name}[/]{scope_suffix}{count_suffix}"
                else:
                    label = f"[green](•) {safe_name} [dim]{safe_ver}[/]{scope_suffix}{count_suffix}"

                new_node = tree_node.add(label, expand=self.show_only_vulnerable, data=child)
                add_nodes(new_node, child)

        add_nodes(tree.root, None)
        self.update_dashboard_ui()
        self.query_one("#loading-container").display = False
        self.query_one("#tree-container").display = True
        tree.focus()
