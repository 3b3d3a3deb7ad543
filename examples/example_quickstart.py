# examples/example_quickstart.py
import sys

from archivenav import NotADirectory, open_session

# Extract bundle.zip (which holds a top-level "bundle/" folder) under ./buffer
with open_session("bundle.zip") as nav:
    # List the archive root
    print("Root:", nav.ls())

    # Change directory
    nav.cd("payload/")
    print("Now in:", nav.pwd())
    print("Inside payload:", nav.ls())

    # Stream a file to stdout
    nav.cat("data1.csv", sys.stdout.buffer)

    # Kind mismatches are reported, not silently ignored
    try:
        nav.ls("data1.csv")
    except NotADirectory as e:
        print("error:", e)

    nav.cd_up()
    print("Back in:", nav.pwd())
# ./buffer is gone here
