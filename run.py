# run.py
# Description: Entry point for the mfg_capture sync console. Loads config, opens the local store and runs the app.
#
# Imports
import sys
from pathlib import Path
#
# Local Imports
# --- Add project root to sys.path so the app runs from a source checkout ---
project_dir = Path(__file__).parent.resolve()
sys.path.insert(0, str(project_dir))
try:
    from mfg_capture.app import main
except ModuleNotFoundError as e:
    print(f"ERROR: run.py: Failed to import from mfg_capture package.")
    print(f"       Ensure '{project_dir}' contains 'mfg_capture' or install it with `pip install -e .`.")
    print(f"       Original error: {e}")
    sys.exit(1)
#
#######################################################################################################################
#
# Functions:

if __name__ == "__main__":
    main()

#
# End of run.py
#######################################################################################################################
