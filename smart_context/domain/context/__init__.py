# This module handles context selection
#
#  +---------------------+      +----------------------+
#  |  Query analysis     |      |  Conversation state  |
#  |---------------------|      |----------------------|
#  | concepts, intent    |      | files already viewed |
#  | task type and mode  |      +----------------------+
#  +---------------------+                 |
#             \                           /
#              v                         v
#  +-------------------------------------------+
#  |            Relevance scorer               |   similarity, history,
#  |-------------------------------------------|   recency, imports,
#  | score, confidence, reasons per file       |   co-change, paths
#  +-------------------------------------------+
#                       |
#                       v
#  +-------------------------------------------+
#  |            Context assembler              |
#  |-------------------------------------------|
#  | token budget, threshold, fallback, tiers  |
#  +-------------------------------------------+
#                       |
#                       v
#        [session recorded -> outcome -> learning]
