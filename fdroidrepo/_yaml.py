# Copyright (C) 2026, The fdroidrepo authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""Standard YAML parsing and dumping for the metadata files.

<Application ID>.yml files are F-Droid metadata, which is defined as
YAML 1.2, so the loader forces that version.  The dumper is a separate
"round trip" instance so that the field order given when writing is
kept, and so that no "%YAML 1.2" header is written into files that are
meant to be edited by hand.

"""

import ruamel.yaml

yaml = ruamel.yaml.YAML(typ='safe')
yaml.version = (1, 2)

yaml_dumper = ruamel.yaml.YAML(typ='rt')
yaml_dumper.indent(mapping=2, sequence=4, offset=2)
