"""User-visible strings shared by the decoders, the session and error handling."""

NEWLINE = "\n\n"

# Substring present in both truncation markers; lets callers detect truncation
TRUNCATION_ERROR_INDICATOR = "Response truncated"
TRUNCATION_ERROR_FULL = (
    "[Response truncated: the model reached its maximum token limit before "
    "finishing. Increase max_tokens and try again.]"
)
TRUNCATION_ERROR_PARTIAL = (
    "[Response truncated: some of the generated choices reached the maximum "
    "token limit and were dropped.]"
)

CHAT_ERROR_MESSAGE_401 = (
    "I am sorry. There was an authorization issue with the external API "
    "(Status 401).\nPlease check your API key in the settings"
)
CHAT_ERROR_MESSAGE_NO_CONNECTION = (
    "I am sorry. There was an issue reaching the network.\n"
    "Please check your network connection."
)
CHAT_ERROR_MESSAGE_404 = (
    "I am sorry, your request looks wrong. Please check your URL or model "
    "name in the settings or frontmatter."
)
CHAT_ERROR_RESPONSE = (
    "I am sorry, I could not answer your request because of an error, "
    "here is what went wrong:"
)

TOOL_APPROVAL_NOTICE = "_[Tool approval required...]_\n"
TOOL_RESULTS_HEADER = "Tool execution results:"
CITATIONS_HEADER = "**Sources:**"
TOOL_DECLINED_MESSAGE = "User declined tool execution"
