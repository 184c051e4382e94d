"""
Oracle debate engine: four personas argue about one tracked token, forever.

Modules:
- orchestrator: ConversationOrchestrator tick loop + session/topic bookkeeping
- selector: AgentSelector rotation, loop guard, self-response
- context: ContextBuilder prompt context + repetition detection
- topics: keyword topic extraction
- generator / llm / prompts / postprocess: text generation via LangChain
- feed: Jupiter token feed (aiohttp)
- store / repository: path-addressed persistence (memory or SQLite)
- states: roster, Message, Session
"""
