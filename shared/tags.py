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

import re

TAG_PATTERN = re.compile(r"#(\w+)")


def extract_tags(content: str) -> list[str]:
    """Returns the #word tags in content, deduplicated in first-seen order."""
    tags: list[str] = []
    for match in TAG_PATTERN.finditer(content or ""):
        tag = match.group(1)
        if tag not in tags:
            tags.append(tag)
    return tags
