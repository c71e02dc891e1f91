#!/usr/bin/env python3
"""Development runner"""
import sys
from httpbackup.main import main

if __name__ == '__main__':
    # Use development config for local testing
    sys.exit(main(['--env', 'development'] + sys.argv[1:]))
