#!/usr/bin/env python3
"""
NexaChat server launcher
"""
import os
import sys

# make the project root importable when run as a script
project_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, project_root)

from nexachat.server.bridge import main

if __name__ == "__main__":
    main(sys.argv[1:])
