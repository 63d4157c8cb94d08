"""useful constants"""

rad2deg = 57.295779513082323
deg2rad = 0.017453292519943

# bus types
PQ, PV, SLACK = 1, 2, 3
