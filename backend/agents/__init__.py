# Agents Package Init
#   chat: router -> retrieval -> generator -> quality answer workflow
#   quiz: question generator -> validator quiz generation workflow
