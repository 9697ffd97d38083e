"""
Tests for the sqlcp streaming copy package

This package contains tests for the pipeline core modules: mock-based unit
tests plus end-to-end runs against sqlite files.
"""

import os
import sys

# Add plugins directory to Python path
plugins_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', 'plugins'))
if plugins_dir not in sys.path:
    sys.path.insert(0, plugins_dir)
