from qbo_bridge.cli import run

run()
