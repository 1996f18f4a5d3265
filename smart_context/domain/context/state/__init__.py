# Conversation state: what a conversation has already been shown.
# Files viewed here are skipped at progressive level 1 and discounted at levels 2 and 3.
