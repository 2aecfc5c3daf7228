"""Multi-run window and launch."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path

from microtermi.config import AppConfig, load_config, save_config
from microtermi.env import load_env
from microtermi.errors import ExitCode, MicrotermiError
from microtermi.projects import load_projects
from microtermi.terminal import Project
from microtermi.ui.screens.multi_run import MultiRunScreen

logger = py_logging.getLogger(__name__)

_OUTPUT_STYLE = "background:#1e1e1e;color:#d4d4d4;font-family:monospace;font-size:12px;"


def build_screen(config: AppConfig, projects: list[Project] | None = None) -> MultiRunScreen:
    resolved = projects if projects is not None else load_projects(config.project_paths)
    return MultiRunScreen(
        projects=resolved,
        env_provider=lambda project: load_env(project.path, config.environment),
        script=config.multi_run_script,
        selected_projects=config.multi_run_selected,
        max_lines=config.max_session_lines,
    )


def persist_screen(config: AppConfig, screen: MultiRunScreen, config_path: str | Path | None = None) -> None:
    config.project_paths = [str(project.path) for project in screen.projects]
    config.multi_run_selected = screen.selected_projects
    config.multi_run_script = screen.script
    try:
        save_config(config, config_path)
    except OSError:
        logger.warning("multi-run config-save failed", exc_info=True)


def launch_app(
    *,
    config_path: str | Path | None = None,
    projects: list[Project] | None = None,
) -> int:
    """Open the multi-run window and block until it closes."""
    config = load_config(config_path)
    screen = build_screen(config, projects)

    try:
        from PySide6.QtCore import Qt, QTimer
        from PySide6.QtWidgets import (
            QApplication,
            QComboBox,
            QFileDialog,
            QHBoxLayout,
            QLabel,
            QListWidget,
            QListWidgetItem,
            QMainWindow,
            QPushButton,
            QSplitter,
            QTabBar,
            QTextEdit,
            QVBoxLayout,
            QWidget,
        )
    except ImportError as exc:
        raise MicrotermiError(
            "PySide6 is not installed; the window cannot open.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Run `pip install PySide6` or use --run for headless mode.",
        ) from exc

    app = QApplication.instance() or QApplication(sys.argv)

    class MultiRunWindow(QMainWindow):
        def __init__(self) -> None:
            super().__init__()
            self.setWindowTitle("microtermi")
            self.resize(1200, 760)
            self._tab_signature: tuple[object, ...] = ()
            self._rendered: tuple[int, int] | None = None

            splitter = QSplitter(Qt.Orientation.Horizontal)
            splitter.addWidget(self._build_sidebar())
            splitter.addWidget(self._build_terminal_area())
            splitter.setStretchFactor(1, 1)
            self.setCentralWidget(splitter)

            self._reload_projects()
            self.timer = QTimer(self)
            self.timer.timeout.connect(self.on_tick)
            self.timer.start(config.tick_interval_ms)

        def _build_sidebar(self) -> QWidget:
            panel = QWidget()
            layout = QVBoxLayout(panel)
            layout.addWidget(QLabel("Projects"))
            self.project_list = QListWidget()
            self.project_list.itemChanged.connect(self.on_project_toggled)
            layout.addWidget(self.project_list, 1)

            add_project = QPushButton("Add project folder…")
            add_project.clicked.connect(self.on_add_project)
            layout.addWidget(add_project)

            layout.addWidget(QLabel("Script"))
            self.script_combo = QComboBox()
            self.script_combo.setEditable(True)
            self.script_combo.currentTextChanged.connect(self.on_script_changed)
            layout.addWidget(self.script_combo)

            run_selected = QPushButton("Run on selected")
            run_selected.clicked.connect(self.on_run_selected)
            layout.addWidget(run_selected)
            add_terminal = QPushButton("Add terminal")
            add_terminal.clicked.connect(self.on_add_terminal)
            layout.addWidget(add_terminal)

            layout.addWidget(QLabel("Coverage (highlighted project)"))
            run_tests = QPushButton("Run tests")
            run_tests.clicked.connect(self.on_run_tests)
            layout.addWidget(run_tests)
            open_report = QPushButton("Open coverage report")
            open_report.clicked.connect(self.on_open_coverage)
            layout.addWidget(open_report)

            self.status_label = QLabel("")
            self.status_label.setWordWrap(True)
            layout.addWidget(self.status_label)
            return panel

        def _build_terminal_area(self) -> QWidget:
            panel = QWidget()
            layout = QVBoxLayout(panel)

            self.tab_bar = QTabBar()
            self.tab_bar.setTabsClosable(True)
            self.tab_bar.setExpanding(False)
            self.tab_bar.currentChanged.connect(self.on_tab_selected)
            self.tab_bar.tabCloseRequested.connect(self.on_tab_close)
            layout.addWidget(self.tab_bar)

            actions = QHBoxLayout()
            self.stop_button = QPushButton("Stop")
            self.stop_button.clicked.connect(lambda: self._act(screen.stop_selected))
            self.stop_all_button = QPushButton("Stop all")
            self.stop_all_button.clicked.connect(lambda: self._act(screen.stop_all))
            self.rerun_button = QPushButton("Run again")
            self.rerun_button.clicked.connect(self.on_rerun)
            clear_button = QPushButton("Clear")
            clear_button.clicked.connect(lambda: self._act(screen.clear_selected, rerender=True))
            for button in (self.stop_button, self.stop_all_button, self.rerun_button, clear_button):
                actions.addWidget(button)
            actions.addStretch(1)
            layout.addLayout(actions)

            self.placeholder_row = QWidget()
            placeholder_layout = QHBoxLayout(self.placeholder_row)
            placeholder_layout.setContentsMargins(0, 0, 0, 0)
            self.target_project = QComboBox()
            self.target_project.currentIndexChanged.connect(self.on_target_project_changed)
            self.target_script = QComboBox()
            run_target = QPushButton("Run")
            run_target.clicked.connect(self.on_run_placeholder)
            placeholder_layout.addWidget(QLabel("Project"))
            placeholder_layout.addWidget(self.target_project, 1)
            placeholder_layout.addWidget(QLabel("Script"))
            placeholder_layout.addWidget(self.target_script, 1)
            placeholder_layout.addWidget(run_target)
            layout.addWidget(self.placeholder_row)

            self.output = QTextEdit()
            self.output.setReadOnly(True)
            self.output.setStyleSheet(f"QTextEdit {{{_OUTPUT_STYLE}}}")
            layout.addWidget(self.output, 1)
            return panel

        def _reload_projects(self) -> None:
            self.project_list.blockSignals(True)
            self.project_list.clear()
            selected = set(screen.selected_projects)
            for index, project in enumerate(screen.projects):
                item = QListWidgetItem(project.name)
                item.setToolTip(str(project.path))
                item.setFlags(item.flags() | Qt.ItemFlag.ItemIsUserCheckable)
                item.setCheckState(Qt.CheckState.Checked if index in selected else Qt.CheckState.Unchecked)
                self.project_list.addItem(item)
            self.project_list.blockSignals(False)

            self.script_combo.blockSignals(True)
            self.script_combo.clear()
            self.script_combo.addItems(screen.common_scripts())
            self.script_combo.setCurrentText(screen.script)
            self.script_combo.blockSignals(False)

            self.target_project.blockSignals(True)
            self.target_project.clear()
            self.target_project.addItems([project.name for project in screen.projects])
            self.target_project.blockSignals(False)
            self.on_target_project_changed(self.target_project.currentIndex())

        def _selected_session_id(self) -> int | None:
            selected = screen.registry.selected
            return selected.session_id if selected else None

        def _act(self, action, *, rerender: bool = False) -> None:
            action()
            if rerender:
                self._rendered = None
            self.refresh()

        def on_project_toggled(self, item: QListWidgetItem) -> None:
            screen.toggle_project(self.project_list.row(item), item.checkState() == Qt.CheckState.Checked)
            persist_screen(config, screen, config_path)

        def on_add_project(self) -> None:
            folder = QFileDialog.getExistingDirectory(self, "Project folder")
            if not folder:
                return
            try:
                added = load_projects([folder], strict=True)
            except MicrotermiError as exc:
                screen.status_message = exc.message
            else:
                screen.set_projects(screen.projects + added)
                persist_screen(config, screen, config_path)
                self._reload_projects()
            self.refresh()

        def on_script_changed(self, text: str) -> None:
            screen.script = text.strip()
            persist_screen(config, screen, config_path)

        def on_run_selected(self) -> None:
            self._act(screen.run_selected)

        def on_add_terminal(self) -> None:
            self._act(screen.add_terminal)

        def on_run_tests(self) -> None:
            self._act(lambda: screen.run_tests(self.project_list.currentRow()))

        def on_open_coverage(self) -> None:
            self._act(lambda: screen.open_coverage_report(self.project_list.currentRow()))

        def on_rerun(self) -> None:
            session_id = self._selected_session_id()
            if session_id is not None:
                self._act(lambda: screen.rerun(session_id), rerender=True)

        def on_target_project_changed(self, index: int) -> None:
            self.target_script.clear()
            if 0 <= index < len(screen.projects):
                self.target_script.addItems(screen.projects[index].script_names())

        def on_run_placeholder(self) -> None:
            session_id = self._selected_session_id()
            if session_id is None:
                return
            if screen.set_target(session_id, self.target_project.currentIndex(), self.target_script.currentText()):
                screen.run_placeholder(session_id)
            self._rendered = None
            self.refresh()

        def on_tab_selected(self, index: int) -> None:
            tabs = screen.tabs()
            if 0 <= index < len(tabs):
                screen.select(tabs[index].session_id)
                self.refresh()

        def on_tab_close(self, index: int) -> None:
            tabs = screen.tabs()
            if 0 <= index < len(tabs):
                self._act(lambda: screen.close_pane(tabs[index].session_id))

        def on_tick(self) -> None:
            if screen.tick():
                self._rendered = None
            self.refresh()

        def refresh(self) -> None:
            tabs = screen.tabs()
            signature = tuple((tab.session_id, tab.label, tab.selected) for tab in tabs)
            if signature != self._tab_signature:
                self._tab_signature = signature
                self.tab_bar.blockSignals(True)
                while self.tab_bar.count():
                    self.tab_bar.removeTab(0)
                for tab in tabs:
                    self.tab_bar.addTab(tab.label)
                selected_index = screen.registry.selected_index
                if selected_index is not None:
                    self.tab_bar.setCurrentIndex(selected_index)
                self.tab_bar.blockSignals(False)

            selected = next((tab for tab in tabs if tab.selected), None)
            self.stop_button.setEnabled(bool(selected and selected.running))
            self.stop_all_button.setEnabled(screen.registry.any_running)
            self.rerun_button.setEnabled(bool(selected and selected.can_rerun))
            self.placeholder_row.setVisible(bool(selected and selected.placeholder))
            self.status_label.setText(screen.status_message)

            if selected is None:
                self.output.clear()
                self._rendered = None
                return
            line_count = len(screen.registry.get(selected.session_id).lines)
            marker = (selected.session_id, line_count)
            if marker == self._rendered:
                return
            self._rendered = marker
            self.output.setHtml(screen.render_html(selected.session_id))
            scrollbar = self.output.verticalScrollBar()
            scrollbar.setValue(scrollbar.maximum())

        def closeEvent(self, event) -> None:  # noqa: N802
            self.timer.stop()
            screen.registry.shutdown()
            persist_screen(config, screen, config_path)
            super().closeEvent(event)

    window = MultiRunWindow()
    window.show()
    logger.info("multi-run window opened projects=%s", len(screen.projects))
    app.exec()
    return int(ExitCode.SUCCESS)
