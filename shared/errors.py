# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""Error taxonomy shared by the sync layer, the importer and the scripts."""


class TaskpadError(Exception):
    """Base class for domain errors."""


class ValidationError(TaskpadError):
    """A required field is empty or a payload is malformed.

    Raised before any cache mutation.
    """


class NotFoundError(TaskpadError):
    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class PermissionDeniedError(TaskpadError):
    """The entity belongs to another owner."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"Access denied to {kind} {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class NetworkError(TaskpadError):
    """Transient remote failure. Safe to retry."""


class ParseAmbiguity(UserWarning):
    """The importer could not classify a line and kept it as notes."""

    def __init__(self, line_number: int, line: str):
        super().__init__(f"line {line_number}: {line!r}")
        self.line_number = line_number
        self.line = line
