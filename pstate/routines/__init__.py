from collections import OrderedDict

# all_routines: file name: class name
all_routines = OrderedDict([('se', ['SE']),
                            ])

from pstate.routines.se import SE  # NOQA
