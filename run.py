#!/usr/bin/env python3
"""Command line runner"""
import os
from rotabackup.cli import main

if __name__ == '__main__':
    # Use development config when running from a checkout
    os.environ.setdefault('ROTABACKUP_ENV', 'development')

    main()
