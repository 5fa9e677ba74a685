"""
GraphQL documents sent to the Linear API.

Every list query takes ``$first`` and ``$after`` and returns a connection
with ``nodes`` and ``pageInfo { hasNextPage endCursor }`` so the client can
page through it uniformly. Field sets are the minimum the store needs.
"""

ISSUE_FIELDS = """
    id
    identifier
    title
    description
    priority
    estimate
    url
    createdAt
    updatedAt
    startedAt
    completedAt
    canceledAt
    parent { id }
    comments(first: 50, orderBy: createdAt) {
      nodes { createdAt }
      pageInfo { hasNextPage }
    }
    labels { nodes { name } }
    team { id name key }
    state { id name type }
    assignee { id name avatarUrl }
    creator { id name }
    project {
      id
      name
      state
      health
      updatedAt
      targetDate
      startDate
      completedAt
      lead { id name }
    }
"""

PAGE_INFO = "pageInfo { hasNextPage endCursor }"

STARTED_ISSUES = f"""
query StartedIssues($first: Int!, $after: String) {{
  issues(
    first: $first
    after: $after
    filter: {{ state: {{ type: {{ eq: "started" }} }} }}
  ) {{
    nodes {{ {ISSUE_FIELDS} }}
    {PAGE_INFO}
  }}
}}
"""

RECENTLY_UPDATED_ISSUES = f"""
query RecentlyUpdatedIssues($first: Int!, $after: String, $since: DateTimeOrDuration!) {{
  issues(
    first: $first
    after: $after
    filter: {{ updatedAt: {{ gte: $since }} }}
  ) {{
    nodes {{ {ISSUE_FIELDS} }}
    {PAGE_INFO}
  }}
}}
"""

PROJECT_ISSUES = f"""
query ProjectIssues($first: Int!, $after: String, $projectId: ID!) {{
  issues(
    first: $first
    after: $after
    filter: {{ project: {{ id: {{ eq: $projectId }} }} }}
  ) {{
    nodes {{ {ISSUE_FIELDS} }}
    {PAGE_INFO}
  }}
}}
"""

PROJECTS_BY_STATE = f"""
query ProjectsByState($first: Int!, $after: String, $states: [String!]) {{
  projects(
    first: $first
    after: $after
    filter: {{ state: {{ in: $states }} }}
  ) {{
    nodes {{
      id
      name
      state
      updatedAt
      completedAt
      canceledAt
    }}
    {PAGE_INFO}
  }}
}}
"""

PROJECT_DETAILS = """
query ProjectDetails($projectId: String!) {
  project(id: $projectId) {
    id
    name
    state
    status { name }
    health
    description
    content
    targetDate
    startDate
    completedAt
    updatedAt
    lead { id name avatarUrl }
    labels { nodes { name } }
    teams { nodes { key } }
    projectUpdates(first: 50) {
      nodes { id createdAt updatedAt body health }
    }
  }
}
"""

INITIATIVES = f"""
query Initiatives($first: Int!, $after: String) {{
  initiatives(first: $first, after: $after) {{
    nodes {{
      id
      name
      description
      content
      status
      targetDate
      startedAt
      completedAt
      archivedAt
      health
      healthUpdatedAt
      createdAt
      updatedAt
      owner {{ id name }}
      projects {{ nodes {{ id }} }}
    }}
    {PAGE_INFO}
  }}
}}
"""

INITIATIVE_UPDATES = """
query InitiativeUpdates($initiativeId: String!) {
  initiative(id: $initiativeId) {
    id
    initiativeUpdates(first: 50) {
      nodes { id createdAt updatedAt body health }
    }
  }
}
"""

VIEWER = """
query Viewer {
  viewer { id name }
}
"""
