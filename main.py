"""
main.py — Entry point for Tide
"""

import logging
import os
import sys
from pathlib import Path

# High-DPI support
os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")

from PyQt6.QtGui import QFont
from PyQt6.QtWidgets import QApplication

from main_window import MainWindow
from models import APP_NAME


def main():
    logging.basicConfig(
        level=os.environ.get("TIDE_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = QApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setOrganizationName(APP_NAME)
    app.setStyle("Fusion")
    app.setFont(QFont("Segoe UI", 10))

    app.setStyleSheet("""
        QMainWindow { background: #f0f0f0; }
        QScrollArea#previewScrollArea { border: none; background: #444; }
        QSplitter::handle { background: #d0d0d0; }
        QListWidget { border: none; }
        QStatusBar { background: #fafafa; border-top: 1px solid #e0e0e0; }
    """)

    window = MainWindow()

    # tide [project_dir] [main_file]
    args = sys.argv[1:]
    if args and Path(args[0]).is_dir():
        window.open_project(args[0], args[1] if len(args) > 1 else None)

    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
