"""WatchTower command line interface."""
