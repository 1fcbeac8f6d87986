import strawberry

from app.graphql.bookings.mutations import BookingMutation
from app.graphql.bookings.queries import BookingQuery
from app.graphql.daily_access.mutations import DailyAccessMutation
from app.graphql.daily_access.queries import DailyAccessQuery
from app.graphql.ledger.mutations import LedgerMutation
from app.graphql.ledger.queries import LedgerQuery
from app.graphql.subscriptions.mutations import SubscriptionMutation
from app.graphql.subscriptions.queries import SubscriptionQuery


@strawberry.type
class Query(LedgerQuery, DailyAccessQuery, BookingQuery, SubscriptionQuery):
    @strawberry.field
    def hello(self) -> str:
        return "Hello from GraphQL!"


@strawberry.type
class Mutation(LedgerMutation, DailyAccessMutation, BookingMutation, SubscriptionMutation):
    pass


schema = strawberry.Schema(query=Query, mutation=Mutation)
