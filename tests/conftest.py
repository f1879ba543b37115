import sys
from os.path import dirname as d
from os.path import abspath, join

root_dir = d(d(abspath(__file__)))
# Run against the source tree even when the project is not installed.
sys.path.insert(0, join(root_dir, "src"))
sys.path.insert(0, join(root_dir, "tests"))
