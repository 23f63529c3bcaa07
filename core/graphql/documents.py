"""GraphQL documents used against the GitLab API."""

THREADS_QUERY = """
query {
    aiConversationThreads(conversationType: DUO_CHAT) {
        nodes {
            id
            conversationType
            createdAt
            title
            lastUpdatedAt
        }
    }
}
"""

MESSAGES_QUERY = """
query($threadId: AiConversationThreadID!) {
    aiMessages(threadId: $threadId) {
        nodes {
            id
            requestId
            content
            role
            timestamp
            chunkId
            errors
        }
    }
}
"""

CURRENT_USER_QUERY = """
query {
    currentUser {
        id
        username
        name
        duoChatAvailable
        duoChatAvailableFeatures
    }
}
"""

AI_ACTION_MUTATION = """
mutation($input: AiActionInput!) {
    aiAction(input: $input) {
        requestId
        errors
        threadId
    }
}
"""

DELETE_THREAD_MUTATION = """
mutation deleteConversationThread($input: DeleteConversationThreadInput!) {
    deleteConversationThread(input: $input) {
        success
        errors
    }
}
"""

CONTEXT_PRESETS_QUERY = """
query getAiChatContextPresets($resourceId: AiModelID, $projectId: ProjectID, $url: String, $questionCount: Int) {
    aiChatContextPresets(
        resourceId: $resourceId,
        projectId: $projectId,
        url: $url,
        questionCount: $questionCount
    ) {
        questions
        __typename
    }
}
"""

SLASH_COMMANDS_QUERY = """
query($url: String!) {
    aiSlashCommands(url: $url) {
        name
        description
    }
}
"""

PROJECT_QUERY = """
query($fullPath: ID!) {
    project(fullPath: $fullPath) {
        id
    }
}
"""

COMPLETION_SUBSCRIPTION = """
subscription aiCompletionResponse($userId: UserID, $clientSubscriptionId: String, $aiAction: AiAction) {
    aiCompletionResponse(
        userId: $userId
        aiAction: $aiAction
        clientSubscriptionId: $clientSubscriptionId
    ) {
        id
        requestId
        content
        errors
        role
        threadId
        timestamp
        type
        chunkId
        extras {
            sources
            __typename
        }
        __typename
    }
}
"""
