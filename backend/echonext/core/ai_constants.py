"""AI service constants and prompts.

Centralized configuration for next-word prediction including
system prompts, user prompt templates, and model parameters.
"""

# OpenAI API parameters
AI_TEMPERATURE = 0.7
AI_TOP_P = 0.9
LLM_MAX_TOKENS = 10
RAG_MAX_TOKENS = 20

# Retrieval gate
RAG_TOP_K = 3
RAG_SIMILARITY_THRESHOLD = 0.3

# Plain predictor confidence when a word is produced
LLM_CONFIDENCE = 0.8

# Rolling conversation history length (utterances)
HISTORY_SIZE = 10

# System prompt for plain next-word prediction
LLM_SYSTEM_PROMPTS = {
    "ja": """あなたは日本語音声の次単語予測エンジンです。話者が次に言いそうな自然な単語またはフレーズを予測してください。

ルール:
1. 助詞だけの出力は禁止（が、を、に、へ、で、や、は、も、ので、から、まで、など、か、な、ね、よ、て）
2. 必ず意味のある単語を含めること（名詞、動詞、形容詞など）
3. 1〜3単語程度の自然な続きを予測
4. 直前の文脈と全く同じ単語や表現の繰り返しは避けること
5. 文が完結していたら新しいトピックを予測すること
6. 説明や句読点は不要""",
    "en": """You are an English speech next word prediction engine. Predict the natural word or phrase that the speaker is likely to say next.

Rules:
1. Do not output only articles or prepositions (a, an, the, of, to, in, for, on, at, by, with, etc.)
2. Must include meaningful words (nouns, verbs, adjectives, etc.)
3. Predict 1-3 words as a natural continuation
4. Avoid repeating the exact same words or expressions from the immediate context
5. If the sentence is complete, predict a new topic
6. No explanations or punctuation needed""",
}

LLM_USER_PROMPTS = {
    "ja": "履歴: {history}\n文脈: {context}\n話者が次に言いそうな単語:",
    "en": "History: {history}\nContext: {context}\nNext word the speaker is likely to say:",
}

EMPTY_HISTORY = {"ja": "なし", "en": "none"}

# System prompt for knowledge-grounded prediction
RAG_SYSTEM_PROMPTS = {
    "ja": """あなたは専門知識に基づいて次の単語を予測するエンジンです。

以下の関連知識を参考にして、話者が次に言いそうな自然な単語またはフレーズを予測してください。

{knowledge}

ルール:
1. 関連知識の内容を活用すること
2. 助詞だけの出力は禁止
3. 1〜3単語程度の自然な続きを予測
4. 説明や句読点は不要""",
    "en": """You are a prediction engine based on specialized knowledge.

Use the following relevant knowledge to predict the natural word or phrase the speaker is likely to say next.

{knowledge}

Rules:
1. Utilize the content from relevant knowledge
2. Do not output only articles or prepositions
3. Predict 1-3 words as a natural continuation
4. No explanations or punctuation needed""",
}

RAG_KNOWLEDGE_LABELS = {
    "ja": "[関連知識{index}] {text}",
    "en": "[Relevant knowledge {index}] {text}",
}

RAG_USER_PROMPTS = {
    "ja": "文脈: {context}\n話者が次に言いそうな単語:",
    "en": "Context: {context}\nNext word the speaker is likely to say:",
}
